"""
Gradio Entrypoint
=================

Purpose:
- Provide a local console for the contact center chatbot so its answers and
  the policy reasons behind them can be reviewed without the HTTP service.

Usage:
- `pip install -e .`
- `python main.py` (after sourcing `.env`) to launch the Gradio interface.
"""

import gradio as gr

from contact_center.config import Settings
from contact_center.main import build_assistant

assistant = build_assistant(Settings())


async def handle_message(message: str, history: list[dict[str, str]], session_id: str | None):
    """Gradio callback: answer the message and show the model's stated reason."""
    if not message.strip():
        return history, "", ""

    reply = await assistant.reply(message, session_id=session_id or None)
    history = history + [
        {"role": "user", "content": message},
        {"role": "assistant", "content": reply.answer},
    ]
    reason = reply.reason or ("(fallback answer)" if reply.source == "fallback" else "")
    return history, "", reason


def main() -> None:
    """Launch the Gradio console."""
    with gr.Blocks(title="Contact Center Chatbot") as demo:
        gr.Markdown(
            """
            ## Contact Center Chatbot
            Try customer messages against the chatbot. Set `OPENAI_API_KEY`
            (and optionally `OPENAI_BASE_URL`, `AGENT_MODEL`) in `.env` first.
            """
        )

        session_id = gr.Textbox(label="Session ID (optional)", placeholder="Keeps recent turns in Redis")
        chatbot = gr.Chatbot(height=400, type="messages")
        reason = gr.Textbox(label="Reason given by the model", interactive=False)
        msg = gr.Textbox(label="Customer message", placeholder="My parcel is three days late...")
        send_btn = gr.Button("Send", variant="primary")
        clear_btn = gr.Button("Clear Conversation")

        send_btn.click(handle_message, inputs=[msg, chatbot, session_id], outputs=[chatbot, msg, reason])
        msg.submit(handle_message, inputs=[msg, chatbot, session_id], outputs=[chatbot, msg, reason])
        clear_btn.click(lambda: ([], "", ""), outputs=[chatbot, msg, reason], queue=False)

        demo.queue()

    demo.launch()


if __name__ == "__main__":
    main()
