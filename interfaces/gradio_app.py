from __future__ import annotations

import gradio as gr

from config import settings
from interfaces.board import BoardFeed
from orchestrator.broadcast import BroadcastChannel
from orchestrator.workflow import ScanOrchestrator

ALERT_HEADERS = [
    "Symbol",
    "Type",
    "Change %",
    "Day %",
    "Price",
    "Window low",
    "Window high",
    "Volume",
]


def launch_gradio(orchestrator: ScanOrchestrator, channel: BroadcastChannel) -> None:
    feed = BoardFeed(channel)

    def _refresh() -> tuple[list[list[object]], str]:
        return feed.refresh()

    def _start_scanner() -> tuple[list[list[object]], str, str]:
        orchestrator.start()
        rows, stats_line = _refresh()
        return rows, stats_line, "✅ Scanner is running."

    def _stop_scanner() -> tuple[list[list[object]], str, str]:
        orchestrator.stop()
        rows, stats_line = _refresh()
        return rows, stats_line, "⏹️ Scanner stopped."

    custom_css = """
    .gradio-container {
        max-width: 960px;
        margin: 0 auto;
        padding: 0 24px;
    }
    """

    with gr.Blocks(title="Momentum Scanner", css=custom_css) as demo:
        gr.Markdown("## MOMENTUM SCANNER")
        gr.Markdown(
            f"Alerts when price is {settings.THRESHOLD_MIN:g}–{settings.THRESHOLD_MAX:g}% "
            f"above its {settings.WINDOW_MS / 60000:g}-minute low."
        )

        scanner_status = gr.Markdown("Scanner is stopped.")
        stats_box = gr.Markdown(feed.board.stats_line())
        alert_table = gr.Dataframe(
            headers=ALERT_HEADERS,
            value=[],
            interactive=False,
            label="Active alerts",
        )

        with gr.Row():
            start_button = gr.Button("Start")
            stop_button = gr.Button("Stop", variant="stop")

        start_button.click(
            fn=_start_scanner,
            inputs=None,
            outputs=[alert_table, stats_box, scanner_status],
            queue=False,
        )
        stop_button.click(
            fn=_stop_scanner,
            inputs=None,
            outputs=[alert_table, stats_box, scanner_status],
            queue=False,
        )

        refresh_timer = gr.Timer(2.0)
        refresh_timer.tick(
            fn=_refresh,
            inputs=None,
            outputs=[alert_table, stats_box],
            queue=False,
        )

    try:
        demo.launch()
    finally:
        feed.close()
