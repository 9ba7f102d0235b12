import io
from unittest.mock import MagicMock

import pytest

from pimote.console import ConsoleReader


@pytest.fixture
def controller():
    controller = MagicMock()
    controller.registry.ids.return_value = ["AbCdEfGhIjKl"]
    return controller


@pytest.mark.parametrize("line, expected", [("on\n", True), ("OFF\n", False), ("  On  \n", True)])
def test_on_off_enqueue(controller, line, expected):
    assert ConsoleReader(controller).handle_command(line) is True
    controller.mailbox.put.assert_called_once_with(expected)


def test_restart(controller):
    ConsoleReader(controller).handle_command("Restart")
    controller.request_restart.assert_called_once()
    controller.request_stop.assert_not_called()


def test_stop(controller):
    ConsoleReader(controller).handle_command("stop")
    controller.request_stop.assert_called_once()


def test_clients_lists_ids(controller, caplog):
    caplog.set_level("INFO")
    ConsoleReader(controller).handle_command("clients")
    assert "AbCdEfGhIjKl" in caplog.text


def test_unknown_command_logged(controller, caplog):
    assert ConsoleReader(controller).handle_command("explode") is False
    assert "Unknown command: 'explode'" in caplog.text
    controller.mailbox.put.assert_not_called()


def test_blank_lines_ignored(controller):
    assert ConsoleReader(controller).handle_command("   \n") is True
    controller.mailbox.put.assert_not_called()


def test_reads_stream_until_eof(controller):
    reader = ConsoleReader(controller, io.StringIO("on\nclients\nstop\n"))
    reader.start()
    reader.join(timeout=3)

    assert not reader.is_alive()
    controller.mailbox.put.assert_called_once_with(True)
    controller.request_stop.assert_called_once()
