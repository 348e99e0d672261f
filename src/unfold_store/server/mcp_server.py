"""MCP server exposing the Unfold note store as a command surface."""

import functools
import json
import logging
import uuid
from typing import Any, Callable, Optional

import anyio
from mcp.server.fastmcp import FastMCP
from sqlalchemy.exc import SQLAlchemyError

from unfold_store.config import config
from unfold_store.exceptions import UnfoldError
from unfold_store.models.db_models import init_db
from unfold_store.models.schema import DEFAULT_SPACE_ID, Node, Space
from unfold_store.observability import metrics, timed_operation
from unfold_store.storage.attachment_store import AttachmentStore
from unfold_store.storage.ledger import current_version, head_version
from unfold_store.storage.schema_doctor import SchemaDoctor
from unfold_store.storage.tree_repository import TreeRepository

logger = logging.getLogger(__name__)


async def _in_thread(func: Callable[..., Any], *args, **kwargs) -> Any:
    """Run blocking store work in a worker thread."""
    return await anyio.to_thread.run_sync(functools.partial(func, *args, **kwargs))


def _to_json(value: Any) -> str:
    if isinstance(value, list):
        return json.dumps([item.model_dump(mode="json") for item in value], indent=2)
    return json.dumps(value.model_dump(mode="json"), indent=2)


class UnfoldMcpServer:
    """MCP server for the note store."""

    def __init__(self, engine=None):
        """Initialize the MCP server.

        Args:
            engine: Migrated store engine shared by every component. When
                None, the configured store is opened (and migrated) here.
        """
        self.engine = engine if engine is not None else init_db()
        self.mcp = FastMCP(config.server_name)
        self.tree_repository = TreeRepository(engine=self.engine)
        self.attachment_store = AttachmentStore(engine=self.engine)
        self.schema_doctor = SchemaDoctor(self.engine)
        self._register_tools()
        logger.info("Unfold MCP server initialized")

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        # Generate a unique error ID for traceability in logs
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, UnfoldError):
            # Structured domain errors - use the error code and message
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            # Log full detail but return generic ref to avoid leaking internals
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        elif isinstance(error, (OSError, SQLAlchemyError)):
            logger.error(f"Storage error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: A storage error occurred (ref: {error_id})"
        else:
            # Unexpected errors - log with full stack trace but return generic message
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        # ========== Attachments ==========

        @self.mcp.tool(name="upload_image")
        async def upload_image(
            note_id: str,
            file_name: str,
            base64_data: str,
            mime_type: str,
            size: int,
        ) -> str:
            """Store an image attachment for a note.

            Args:
                note_id: ID of the note the image belongs to
                file_name: Original file name (informational)
                base64_data: Image bytes, standard base64
                mime_type: Image MIME type, e.g. image/png
                size: Size of the image in bytes

            Returns:
                JSON object with the attachment id, absolute path and size
            """
            with timed_operation("upload_image", note_id=note_id, size=size) as op:
                try:
                    result = await _in_thread(
                        self.attachment_store.upload,
                        note_id, file_name, base64_data, mime_type, size,
                    )
                    op["attachment_id"] = result.id
                    op["bytes_written"] = result.size
                    return result.model_dump_json()
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="get_image")
        async def get_image(attachment_id: str) -> str:
            """Get the absolute file path of an image attachment.

            Args:
                attachment_id: ID returned by upload_image
            """
            with timed_operation("get_image", attachment_id=attachment_id) as op:
                try:
                    return await _in_thread(self.attachment_store.fetch, attachment_id)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="delete_image")
        async def delete_image(attachment_id: str) -> str:
            """Delete an image attachment and its file.

            Args:
                attachment_id: ID returned by upload_image
            """
            with timed_operation("delete_image", attachment_id=attachment_id) as op:
                try:
                    await _in_thread(self.attachment_store.delete, attachment_id)
                    op["attachments_removed"] = 1
                    return f"Image {attachment_id} deleted"
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        # ========== Schema diagnostics ==========

        @self.mcp.tool(name="check_database_schema")
        async def check_database_schema() -> str:
            """Check that the images table has the expected shape."""
            with timed_operation("check_database_schema"):
                return await _in_thread(self.schema_doctor.check_database_schema)

        @self.mcp.tool(name="check_nodes_schema")
        async def check_nodes_schema() -> str:
            """List the nodes columns and whether the obsolete 'type' column is present."""
            with timed_operation("check_nodes_schema"):
                return await _in_thread(self.schema_doctor.check_nodes_schema)

        @self.mcp.tool(name="repair_nodes_schema")
        async def repair_nodes_schema() -> str:
            """Rebuild the nodes table without obsolete columns, keeping all rows."""
            with timed_operation("repair_nodes_schema") as op:
                try:
                    return await _in_thread(self.schema_doctor.repair_nodes_schema)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="check_attachments")
        async def check_attachments() -> str:
            """Report image rows without files and image files without rows."""
            with timed_operation("check_attachments"):
                return await _in_thread(self.schema_doctor.check_attachments)

        # ========== Spaces ==========

        @self.mcp.tool(name="list_spaces")
        async def list_spaces() -> str:
            """List all spaces as JSON, in display order."""
            with timed_operation("list_spaces") as op:
                try:
                    spaces = await _in_thread(self.tree_repository.list_spaces)
                    op["count"] = len(spaces)
                    return _to_json(spaces)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="create_space")
        async def create_space(name: str, sort_order: int = 0) -> str:
            """Create a new space.

            Args:
                name: Display name of the space
                sort_order: Position among spaces (default: 0)
            """
            with timed_operation("create_space", name=name[:30]) as op:
                try:
                    space = Space(name=name, sort_order=sort_order)
                    created = await _in_thread(self.tree_repository.create_space, space)
                    op["space_id"] = created.id
                    return _to_json(created)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="rename_space")
        async def rename_space(space_id: str, name: str) -> str:
            """Rename a space."""
            with timed_operation("rename_space", space_id=space_id) as op:
                try:
                    space = await _in_thread(self.tree_repository.rename_space, space_id, name)
                    return _to_json(space)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="delete_space")
        async def delete_space(space_id: str) -> str:
            """Delete a space together with every node in it.

            Args:
                space_id: ID of the space; the default space cannot be deleted
            """
            with timed_operation("delete_space", space_id=space_id) as op:
                try:
                    removed = await _in_thread(self.tree_repository.delete_space, space_id)
                    op["nodes_removed"] = removed
                    return f"Space {space_id} deleted ({removed} nodes removed)"
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        # ========== Nodes ==========

        @self.mcp.tool(name="get_tree")
        async def get_tree(space_id: str = DEFAULT_SPACE_ID) -> str:
            """Get the nested node tree of a space as JSON."""
            with timed_operation("get_tree", space_id=space_id) as op:
                try:
                    await _in_thread(self.tree_repository.get_space, space_id)
                    roots = await _in_thread(self.tree_repository.get_tree, space_id)
                    op["roots"] = len(roots)
                    return _to_json(roots)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="create_node")
        async def create_node(
            name: str,
            space_id: str = DEFAULT_SPACE_ID,
            parent_id: Optional[str] = None,
            content: Optional[str] = None,
            is_open: bool = False,
            is_pinned: bool = False,
        ) -> str:
            """Create a note or folder as the last child of its parent.

            Args:
                name: Display name
                space_id: Space to create the node in (default: the default space)
                parent_id: Parent node ID; omit for a root node
                content: Note body (optional)
                is_open: Whether the node is expanded in the tree
                is_pinned: Whether the node is pinned
            """
            with timed_operation("create_node", space_id=space_id, name=name[:30]) as op:
                try:
                    node = Node(
                        space_id=space_id,
                        parent_id=parent_id or None,
                        name=name,
                        content=content,
                        is_open=is_open,
                        is_pinned=is_pinned,
                    )
                    created = await _in_thread(self.tree_repository.create_node, node)
                    op["node_id"] = created.id
                    return _to_json(created)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="update_node")
        async def update_node(
            node_id: str,
            name: Optional[str] = None,
            content: Optional[str] = None,
            is_open: Optional[bool] = None,
            is_pinned: Optional[bool] = None,
            sort_order: Optional[int] = None,
        ) -> str:
            """Update the given fields of a node; omitted fields are left unchanged.

            Writing name or content refreshes updated_at; the other fields do not.
            """
            with timed_operation("update_node", node_id=node_id) as op:
                try:
                    node = await _in_thread(
                        self.tree_repository.update_node,
                        node_id,
                        name=name,
                        content=content,
                        is_open=is_open,
                        is_pinned=is_pinned,
                        sort_order=sort_order,
                    )
                    return _to_json(node)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="move_node")
        async def move_node(node_id: str, new_parent_id: Optional[str] = None) -> str:
            """Move a node under another node of the same space, or to the space root."""
            with timed_operation("move_node", node_id=node_id) as op:
                try:
                    node = await _in_thread(
                        self.tree_repository.move_node, node_id, new_parent_id or None
                    )
                    return _to_json(node)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        @self.mcp.tool(name="delete_node")
        async def delete_node(node_id: str) -> str:
            """Delete a node together with its whole subtree."""
            with timed_operation("delete_node", node_id=node_id) as op:
                try:
                    removed = await _in_thread(self.tree_repository.delete_node, node_id)
                    op["nodes_removed"] = removed
                    return f"Node {node_id} deleted ({removed} nodes removed)"
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

        # ========== Status ==========

        @self.mcp.tool(name="store_status")
        async def store_status() -> str:
            """Get store status: schema version, counts and per-tool metrics."""
            with timed_operation("store_status") as op:
                try:
                    version = await _in_thread(current_version, self.engine)
                    spaces = await _in_thread(self.tree_repository.list_spaces)
                    node_count = await _in_thread(self.tree_repository.count_nodes)

                    output = "# Unfold Store Status\n\n"
                    output += f"**Database:** {self.engine.url.database}\n"
                    output += f"**Schema version:** {version} (latest {head_version()})\n"
                    output += f"**Spaces:** {len(spaces)}\n"
                    output += f"**Nodes:** {node_count}\n\n"

                    tools, counters = metrics.snapshot()
                    output += "## Metrics\n"
                    output += f"**Uptime:** {metrics.uptime_seconds:.0f}s\n"
                    output += (
                        f"**Operations:** {sum(s.calls for s in tools.values())} "
                        f"({sum(s.errors for s in tools.values())} errors)\n"
                    )
                    output += f"**Attachment bytes written:** {counters.get('bytes_written', 0)}\n"
                    output += f"**Attachments removed:** {counters.get('attachments_removed', 0)}\n"
                    output += f"**Nodes removed:** {counters.get('nodes_removed', 0)}\n"
                    for name, stats in sorted(tools.items()):
                        output += f"  - {name}: {stats.calls} calls, avg {stats.avg_ms:.2f}ms\n"
                    return output
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
