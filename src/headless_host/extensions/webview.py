"""
Headless webview handed to the plugin's webview provider.

Nothing is rendered. The only live path is ``webview.post_message``, which
hands plugin messages to the extension host.
"""

import asyncio
from collections.abc import Callable
from typing import Any

from headless_host.shim.primitives import EventSource, Uri
from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)

PostMessageHandler = Callable[[Any], None]


class HeadlessWebview:
    """Webview stand-in whose outbound messages go to the host."""

    csp_source = "headless:"

    def __init__(self, post_handler: PostMessageHandler):
        self._post_handler = post_handler
        self.html = ""
        self.options: dict[str, Any] = {}
        self.on_did_receive_message: EventSource[Any] = EventSource()

    def post_message(self, message: Any) -> Any:
        """Deliver a plugin message to the host.

        The message is handled before this returns. The return value is an
        already resolved awaitable, so plugins may await it or ignore it.
        """
        self._post_handler(message)
        try:
            future = asyncio.get_running_loop().create_future()
        except RuntimeError:
            return True
        future.set_result(True)
        return future

    def as_webview_uri(self, uri: Uri) -> Uri:
        return uri


class HeadlessWebviewView:
    """Webview view passed to ``resolve_webview_view``."""

    def __init__(self, view_type: str, post_handler: PostMessageHandler):
        self.view_type = view_type
        self.webview = HeadlessWebview(post_handler)
        self.title: str | None = None
        self.description: str | None = None
        self.visible = True
        self.on_did_dispose: EventSource[None] = EventSource()
        self.on_did_change_visibility: EventSource[None] = EventSource()

    def show(self, *args: Any) -> None:
        pass

    def dispose(self) -> None:
        self.on_did_dispose.fire(None)
        self.on_did_dispose.dispose()
        self.on_did_change_visibility.dispose()
        self.webview.on_did_receive_message.dispose()
