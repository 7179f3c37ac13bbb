import threading

import pytest

from posekit.viewer_control import ViewerControl, viewer_settings_from_mapping


def test_defaults_for_missing_values():
    settings = viewer_settings_from_mapping({})
    assert settings.period_ms == pytest.approx(1000.0 / 30)
    assert settings.image_width == 640
    assert settings.image_height == 480
    assert settings.viewpoint_f == 0.0


def test_values_are_read():
    settings = viewer_settings_from_mapping(
        {
            "Camera.fps": 10,
            "Camera.width": 1241,
            "Camera.height": 376,
            "Viewer.ViewpointX": 0.5,
            "Viewer.ViewpointY": -0.7,
            "Viewer.ViewpointZ": -1.8,
            "Viewer.ViewpointF": 500,
        }
    )
    assert settings.period_ms == pytest.approx(100.0)
    assert (settings.image_width, settings.image_height) == (1241, 376)
    assert (settings.viewpoint_x, settings.viewpoint_y, settings.viewpoint_z) == (0.5, -0.7, -1.8)
    assert settings.viewpoint_f == 500.0


def test_invalid_size_falls_back_together():
    settings = viewer_settings_from_mapping({"Camera.width": 800, "Camera.height": 0})
    assert (settings.image_width, settings.image_height) == (640, 480)


def test_low_fps_uses_default():
    settings = viewer_settings_from_mapping({"Camera.fps": 0.5})
    assert settings.period_ms == pytest.approx(1000.0 / 30)


def test_initial_state():
    control = ViewerControl()
    assert control.is_finished() is True
    assert control.is_stopped() is True
    assert control.check_finish() is False


def test_request_stop_ignored_while_stopped():
    control = ViewerControl()
    control.request_stop()
    control.release()
    assert control.stop() is False


def test_stop_and_release_cycle():
    control = ViewerControl()
    control.start()
    assert control.is_finished() is False
    assert control.is_stopped() is False
    control.request_stop()
    assert control.stop() is True
    assert control.is_stopped() is True
    assert control.stop() is False
    control.release()
    assert control.is_stopped() is False


def test_finish_request_blocks_stop():
    control = ViewerControl()
    control.start()
    control.request_stop()
    control.request_finish()
    assert control.check_finish() is True
    assert control.stop() is False
    assert control.is_stopped() is False


def test_set_finish_from_loop_thread():
    control = ViewerControl()
    control.start()

    def loop():
        while not control.check_finish():
            if control.stop():
                while control.is_stopped():
                    pass
        control.set_finish()

    worker = threading.Thread(target=loop)
    worker.start()
    control.request_finish()
    worker.join(timeout=5)
    assert control.is_finished() is True