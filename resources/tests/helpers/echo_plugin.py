"""
File-based plugin used by loader and CLI tests.

Answers single completion requests with the upper-cased prompt and echoes
every other message back as ``echo``.
"""

STATE = {"mode": "code", "chatMessages": []}


class EchoProvider:
    def __init__(self):
        self.webview = None

    async def resolve_webview_view(self, view):
        self.webview = view.webview

    async def handle_webview_message(self, message):
        if message.get("type") == "singleCompletion":
            await self.webview.post_message({
                "type": "singleCompletionResult",
                "completionRequestId": message["completionRequestId"],
                "success": True,
                "completionText": message["text"].upper(),
            })
            return
        await self.webview.post_message({"type": "echo", "payload": message})


async def activate(context):
    provider = EchoProvider()
    context.subscriptions.append(
        context.host.window.register_webview_view_provider("echo.SidebarProvider", provider)
    )
    await context.global_state.update("activated", True)
    return {"get_state": lambda: dict(STATE)}


def deactivate():
    STATE["deactivated"] = True
