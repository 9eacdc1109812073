#!/usr/bin/env python3
"""shadowpaste MCP server: clipboard history capture with hybrid search."""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent
from mcp.server.models import InitializationOptions
from mcp.server.lowlevel import NotificationOptions

from shadowpaste.core.cache import QueryEmbeddingCache
from shadowpaste.core.config import Settings
from shadowpaste.core.errors import ClipboardMonitorError
from shadowpaste.core.intelligence import EmbeddingService
from shadowpaste.core.monitor import (
    ClipboardMonitor,
    SystemClipboardBackend,
    start_listener,
)
from shadowpaste.core.pipeline import CapturePipeline, ClipHistory
from shadowpaste.core.search import SearchEngine
from shadowpaste.core.storage import ClipStorage
from shadowpaste.models.schemas import Entry, SearchResult

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


class ShadowPasteMCPServer:
    """MCP server over the capture pipeline and search engine."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings.from_env()
        self.storage = ClipStorage(self.settings.db_path)
        self.ai = EmbeddingService.from_settings(self.settings)
        self.cache = QueryEmbeddingCache(
            max_size=self.settings.query_cache_size, ttl=self.settings.query_cache_ttl
        )
        self.history = ClipHistory()
        self.search = SearchEngine(
            self.history,
            self.ai,
            cache=self.cache,
            image_scale=self.settings.image_similarity_scale,
            match_bonus=self.settings.text_match_bonus,
        )
        self.monitor = ClipboardMonitor(
            SystemClipboardBackend(poll_interval=self.settings.poll_interval_ms / 1000),
            settle_delay=self.settings.settle_delay_ms / 1000,
            verify_retries=self.settings.verify_retries,
            verify_backoff=self.settings.verify_backoff_ms / 1000,
        )
        self.capture_error: Optional[str] = None
        self._tasks: List[asyncio.Task] = []

        self.app = Server("shadowpaste")
        self._register_handlers()

    def _register_handlers(self):
        """Register MCP protocol handlers."""

        @self.app.list_tools()
        async def list_tools() -> List[Tool]:
            return [
                Tool(
                    name="clip_list",
                    description="List clipboard history, most recent first",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "limit": {
                                "type": "integer",
                                "description": "Number of entries to return",
                                "default": 10,
                                "minimum": 1,
                                "maximum": 100,
                            }
                        },
                    },
                ),
                Tool(
                    name="clip_search",
                    description="Search clipboard history by text match and semantic similarity",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "query": {
                                "type": "string",
                                "description": "Search text",
                            },
                            "limit": {
                                "type": "integer",
                                "description": "Maximum results to return",
                                "default": 10,
                                "minimum": 1,
                                "maximum": 100,
                            },
                        },
                        "required": ["query"],
                    },
                ),
                Tool(
                    name="clip_remove",
                    description="Delete a clipboard history entry by ID",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "entry_id": {
                                "type": "integer",
                                "description": "Entry identifier",
                            }
                        },
                        "required": ["entry_id"],
                    },
                ),
                Tool(
                    name="clip_stats",
                    description="Get clipboard history statistics",
                    inputSchema={"type": "object", "properties": {}},
                ),
                Tool(
                    name="clip_status",
                    description="Embedding model readiness and capture state",
                    inputSchema={"type": "object", "properties": {}},
                ),
            ]

        @self.app.call_tool()
        async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            try:
                result = await self._dispatch_tool_call(name, arguments or {})
                return [
                    TextContent(
                        type="text",
                        text=json.dumps(result, indent=2, ensure_ascii=False),
                    )
                ]
            except Exception as e:
                logger.exception(f"Tool {name} failed")
                error_result = {"error": str(e), "tool": name, "arguments": arguments}
                return [
                    TextContent(type="text", text=json.dumps(error_result, indent=2))
                ]

    async def _dispatch_tool_call(
        self, name: str, arguments: Dict[str, Any]
    ) -> Dict[str, Any]:
        handlers = {
            "clip_list": self._handle_clip_list,
            "clip_search": self._handle_clip_search,
            "clip_remove": self._handle_clip_remove,
            "clip_stats": self._handle_clip_stats,
            "clip_status": self._handle_clip_status,
        }

        handler = handlers.get(name)
        if not handler:
            raise ValueError(f"Unknown tool: {name}")

        return await handler(arguments)

    async def _handle_clip_list(self, args: Dict[str, Any]) -> Dict[str, Any]:
        limit = int(args.get("limit", 10))
        entries = self.history.recent(limit)
        return {
            "entries": [self._format_entry(e) for e in entries],
            "count": len(entries),
            "limit": limit,
        }

    async def _handle_clip_search(self, args: Dict[str, Any]) -> Dict[str, Any]:
        query = args["query"]
        limit = int(args.get("limit", 10))

        results, semantic = await self.search.search(query)
        return {
            "query": query,
            "results": [self._format_result(r) for r in results[:limit]],
            "count": min(len(results), limit),
            "semantic": semantic,
        }

    async def _handle_clip_remove(self, args: Dict[str, Any]) -> Dict[str, Any]:
        entry_id = int(args["entry_id"])
        if entry_id <= 0:
            # Unpersisted entries all share id 0
            raise ValueError(f"Invalid entry id: {entry_id}")

        removed = self.history.remove(entry_id)
        await asyncio.to_thread(self.storage.delete_by_id, entry_id)
        return {"id": entry_id, "status": "removed" if removed else "not_found"}

    async def _handle_clip_stats(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self.storage.get_stats)

    async def _handle_clip_status(self, args: Dict[str, Any]) -> Dict[str, Any]:
        if self.capture_error:
            capture = {"running": False, "error": self.capture_error}
        else:
            error = self.monitor.error
            capture = {
                "running": self.monitor.running,
                "error": str(error) if error else None,
            }
        return {
            "embedder": self.ai.get_status(),
            "capture": capture,
            "history_size": len(self.history),
            "query_cache": self.cache.get_stats(),
        }

    def _format_entry(self, entry: Entry) -> Dict[str, Any]:
        content = entry.content.payload
        if len(content) > PREVIEW_LENGTH:
            content = content[:PREVIEW_LENGTH] + "..."
        return {
            "id": entry.id,
            "content_type": entry.content.kind,
            "content": content,
            "captured_at": entry.captured_at.isoformat(),
            "has_embedding": entry.embedding is not None,
        }

    def _format_result(self, result: SearchResult) -> Dict[str, Any]:
        formatted = self._format_entry(result.entry)
        formatted["similarity"] = round(result.similarity, 3)
        formatted["text_match"] = result.text_match
        return formatted

    async def start(self):
        """Open storage, load history, and start model loading and capture."""
        # Storage failure here is fatal
        self.storage.open()
        self.history.extend(await asyncio.to_thread(self.storage.load_all))
        logger.info(f"Loaded {len(self.history)} clipboard entries")

        self._tasks.append(asyncio.create_task(self.ai.start()))

        try:
            queue = start_listener(self.monitor, asyncio.get_running_loop())
        except ClipboardMonitorError as e:
            self.capture_error = str(e)
            logger.error(f"Clipboard capture disabled: {e}")
            return

        pipeline = CapturePipeline(queue, self.ai, self.storage, self.history)
        task = asyncio.create_task(pipeline.run())
        task.add_done_callback(self._on_pipeline_done)
        self._tasks.append(task)

    def _on_pipeline_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        self.capture_error = f"Capture consumer stopped: {error}"
        logger.error(self.capture_error)

    async def stop(self):
        self.monitor.stop(timeout=1.0)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.storage.close()

    async def run(self):
        """Run MCP server over stdio."""
        await self.start()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.app.run(
                    read_stream,
                    write_stream,
                    InitializationOptions(
                        server_name="shadowpaste",
                        server_version="0.1.0",
                        capabilities=self.app.get_capabilities(
                            notification_options=NotificationOptions(),
                            experimental_capabilities={},
                        ),
                    ),
                )
        finally:
            await self.stop()


async def async_main(settings: Optional[Settings] = None):
    server = ShadowPasteMCPServer(settings)
    await server.run()


def main():
    """Synchronous entry point for console script."""
    settings = Settings.from_env()
    # stdout carries the MCP protocol
    logging.basicConfig(
        level=settings.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(async_main(settings))
    except KeyboardInterrupt:
        logger.info("shadowpaste stopped")


if __name__ == "__main__":
    main()
