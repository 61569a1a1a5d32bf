"""
Chat: Gradio UI
================
Single-file Gradio Blocks application. Every user action is handed to the
ConversationOrchestrator; the chatbot re-renders whenever the store changes.
"""

import sys, os, asyncio, mimetypes
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "backend"))

import gradio as gr
from logger import setup_logging
from models.schemas import Attachment, ImagePart, Message, PartsContent, TextContent, TextPart
from services.completion import CompletionClient
from services.orchestrator import ConversationOrchestrator
from services.store import MessageStore
from settings import settings

setup_logging(settings.get_log_level())

# ---------------------------------------------------------------------------
# Session state (one store per process)
# ---------------------------------------------------------------------------
store = MessageStore()
orchestrator = ConversationOrchestrator(store, CompletionClient())


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def _render_content(message: Message) -> str:
    content = message.content
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, PartsContent):
        pieces = []
        for part in content.parts:
            if isinstance(part, TextPart):
                pieces.append(part.value)
            elif isinstance(part, ImagePart):
                pieces.append("[Image]")
        return "\n\n".join(pieces)
    raise TypeError(f"Unknown content type: {type(content).__name__}")


def render_history(messages: list[Message]) -> list[dict]:
    return [{"role": m.role, "content": _render_content(m)} for m in messages]


def _status() -> str:
    return f"**Error:** {store.error}" if store.error else ""


def _attachments(files: list) -> list[Attachment]:
    result = []
    for f in files:
        path = f if isinstance(f, str) else f.get("path", f.get("name", ""))
        filetype = mimetypes.guess_type(path)[0] or "application/octet-stream"
        size = os.path.getsize(path) if os.path.exists(path) else 0
        result.append(Attachment(filename=os.path.basename(path), filepath=path, filetype=filetype, filesize=size))
    return result


async def _drive(coro):
    """Run an orchestrator request, yielding a fresh render after every store change."""
    changed = asyncio.Event()
    unsubscribe = store.subscribe(changed.set)
    task = asyncio.create_task(coro)
    try:
        while not task.done():
            waiter = asyncio.create_task(changed.wait())
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            waiter.cancel()
            changed.clear()
            yield render_history(orchestrator.messages), _status()
        await task
        yield render_history(orchestrator.messages), _status()
    finally:
        unsubscribe()


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------
async def chat_handler(user_input: dict):
    """MultimodalTextbox returns {"text": ..., "files": [...]}"""
    text = user_input.get("text", "").strip() if isinstance(user_input, dict) else str(user_input).strip()
    files = user_input.get("files", []) if isinstance(user_input, dict) else []

    async for update in _drive(orchestrator.send(text, _attachments(files))):
        yield update


async def regenerate_handler():
    replies = [m for m in orchestrator.messages if m.role == "assistant"]
    if not replies:
        yield render_history(orchestrator.messages), _status()
        return
    async for update in _drive(orchestrator.regenerate(replies[-1].id)):
        yield update


def load_conversations(search: str = ""):
    convs = store.search(search or "")
    choices = [(f"{c.display_title()}  ·  {c.preview()}", c.id) for c in convs]
    return gr.update(choices=choices, value=store.current_id)


def select_conversation(conv_id: str):
    if conv_id:
        orchestrator.select_conversation(conv_id)
    return render_history(orchestrator.messages), _status()


def new_chat():
    orchestrator.new_chat()
    return [], "", ""


def clear_all(search: str = ""):
    orchestrator.clear_all()
    return [], "", load_conversations(search)


# ---------------------------------------------------------------------------
# Build Gradio UI
# ---------------------------------------------------------------------------
def create_app():
    with gr.Blocks(title="Chat", fill_height=True) as app:
        with gr.Row(equal_height=True):
            # ============ SIDEBAR ============
            with gr.Column(scale=1, min_width=280):
                gr.Markdown("## 💬 Conversations")

                new_chat_btn = gr.Button("➕  New Chat", variant="primary", size="lg")

                history_search = gr.Textbox(
                    placeholder="🔍 Search conversations…",
                    show_label=False,
                    container=False,
                )

                conv_list = gr.Radio(choices=[], label="Recent Conversations")

                clear_btn = gr.Button("🗑️  Clear All", variant="stop", size="sm")

            # ============ MAIN CHAT AREA ============
            with gr.Column(scale=4, min_width=600):
                chatbot = gr.Chatbot(
                    label="Chat",
                    height="70vh",
                    render_markdown=True,
                    placeholder=(
                        '<div style="text-align:center;padding:3em">'
                        "<h2>How can I help you today?</h2>"
                        '<p style="color:#94a3b8">Type a message below to start a conversation.</p></div>'
                    ),
                )
                status = gr.Markdown("")

                with gr.Row():
                    msg_input = gr.MultimodalTextbox(
                        placeholder="Type your message...",
                        show_label=False,
                        file_count="multiple",
                        submit_btn=True,
                        scale=5,
                    )
                    regenerate_btn = gr.Button("🔄 Regenerate", scale=1)

        # ============ EVENT WIRING ============
        msg_input.submit(
            fn=chat_handler,
            inputs=msg_input,
            outputs=[chatbot, status],
        ).then(
            fn=lambda: gr.update(value=None),
            inputs=None,
            outputs=msg_input,
        ).then(
            fn=load_conversations,
            inputs=history_search,
            outputs=conv_list,
        )

        regenerate_btn.click(fn=regenerate_handler, inputs=None, outputs=[chatbot, status])

        new_chat_btn.click(fn=new_chat, inputs=None, outputs=[chatbot, status, history_search]).then(
            fn=load_conversations, inputs=history_search, outputs=conv_list,
        )

        clear_btn.click(fn=clear_all, inputs=history_search, outputs=[chatbot, status, conv_list])

        conv_list.change(fn=select_conversation, inputs=conv_list, outputs=[chatbot, status])

        history_search.change(fn=load_conversations, inputs=history_search, outputs=conv_list)

        app.load(fn=load_conversations, inputs=history_search, outputs=conv_list)

    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app = create_app()
    app.launch(
        server_name="0.0.0.0",
        server_port=7860,
        share=False,
        show_error=True,
    )
