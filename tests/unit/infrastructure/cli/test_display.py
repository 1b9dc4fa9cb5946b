import pytest
from unittest.mock import MagicMock

from rich.panel import Panel
from rich.table import Table

from tmdbgov.infrastructure.cli.display import ConsoleDisplay

@pytest.fixture
def mock_console():
    """Fixture to create a mock rich Console object."""
    return MagicMock()

@pytest.fixture
def console_display(mock_console: MagicMock):
    """Fixture to create a ConsoleDisplay instance with a mocked console."""
    display = ConsoleDisplay()
    display.console = mock_console # Inject the mock
    return display

def printed(mock_console: MagicMock):
    return [args[0] for args, _ in mock_console.print.call_args_list if args]

def test_display_json_uses_print_json(console_display: ConsoleDisplay, mock_console: MagicMock):
    body = {"id": 550, "title": "Fight Club"}
    console_display.display_json(body, title="movie/550")
    mock_console.print_json.assert_called_once_with(data=body)
    mock_console.print.assert_called_once_with("[bold cyan]movie/550[/bold cyan]")

def test_display_json_falls_back_for_unserializable(console_display: ConsoleDisplay, mock_console: MagicMock):
    mock_console.print_json.side_effect = TypeError("not serializable")
    payload = {"when": object()}
    console_display.display_json(payload)
    mock_console.print.assert_called_once_with(payload)

def test_display_error_prints_red_panel(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_error("Something went wrong")
    mock_console.print.assert_called_once()
    panel = printed(mock_console)[0]
    assert isinstance(panel, Panel)
    assert "Error" in panel.title
    assert panel.renderable.plain == "Something went wrong"

def test_display_warning_and_info(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_warning("Slow down")
    console_display.display_info("All good")
    warning, info = printed(mock_console)
    assert "Warning" in warning.title
    assert "Info" in info.title

def test_display_progress_line(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_progress("popular", 2, 4, 40)
    line = printed(mock_console)[0]
    assert "popular" in line
    assert "page 2/4" in line
    assert "50%" in line
    assert "~40 items" in line

def test_display_stats_table(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_stats({
        "total_requests": 3,
        "timeout_count": 1,
        "response_times": [100.0, 300.0],
        "average_response_time_ms": 200.0,
        "min_response_time_ms": 100.0,
        "max_response_time_ms": 300.0,
    })
    table = printed(mock_console)[0]
    assert isinstance(table, Table)
    assert table.row_count == 6

def test_display_status_lists_streams(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_status({
        "queue_length": 2,
        "is_dispatching": True,
        "active_streams": [{"id": "popular", "progress": "1/3", "cancelled": False}],
        "last_dispatch_at": None,
    })
    table = printed(mock_console)[0]
    assert table.row_count == 4

def test_display_items_truncates_to_limit(console_display: ConsoleDisplay, mock_console: MagicMock):
    items = [{"title": f"Movie {i}", "year": 2000 + i, "vote_average": 6.5} for i in range(5)]
    console_display.display_items(items, limit=3)
    table, more = printed(mock_console)
    assert table.row_count == 3
    assert "2 more" in more
