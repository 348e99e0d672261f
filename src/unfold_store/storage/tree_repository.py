"""Repository for spaces and their node trees."""
import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from unfold_store.exceptions import (
    ErrorCode,
    NotFoundError,
    StorageError,
    ValidationError,
)
from unfold_store.models.db_models import DBNode, DBSpace, get_session_factory
from unfold_store.models.schema import (
    DEFAULT_SPACE_ID,
    Node,
    Space,
    TreeNode,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


class TreeRepository:
    """Repository for spaces and nodes stored as an adjacency list.

    Deletes are single statements: the ``ON DELETE CASCADE`` references on
    ``nodes.space_id`` and ``nodes.parent_id`` make SQLite remove every
    descendant. Timestamps are maintained by triggers; this class only passes
    them through when the caller supplies them on create.
    """

    def __init__(self, engine=None):
        """Initialize the repository.

        Args:
            engine: Migrated store engine. If None, opens the configured store.
        """
        self.session_factory = get_session_factory(engine)
        logger.info("TreeRepository initialized")

    # ========== Spaces ==========

    def list_spaces(self) -> List[Space]:
        """Get all spaces ordered by sort_order."""
        with self.session_factory() as session:
            result = session.execute(
                select(DBSpace).order_by(DBSpace.sort_order, DBSpace.id)
            )
            return [self._db_space_to_model(db) for db in result.scalars().all()]

    def get_space(self, space_id: str) -> Space:
        """Get a space by ID.

        Raises:
            NotFoundError: If no space has this ID.
        """
        with self.session_factory() as session:
            db_space = session.get(DBSpace, space_id)
            if db_space is None:
                raise NotFoundError("space", space_id)
            return self._db_space_to_model(db_space)

    def create_space(self, space: Space) -> Space:
        """Create a new space.

        Raises:
            ValidationError: If a space with the same ID already exists.
        """
        with self.session_factory() as session:
            if session.get(DBSpace, space.id) is not None:
                raise ValidationError(
                    f"Space '{space.id}' already exists", field="id", value=space.id
                )
            session.add(
                DBSpace(id=space.id, name=space.name, sort_order=space.sort_order)
            )
            self._commit(session, "create_space")
        logger.info(f"Created space: {space.id}")
        return space

    def rename_space(self, space_id: str, name: str) -> Space:
        """Rename a space."""
        if not name or not name.strip():
            raise ValidationError("Space name cannot be empty", field="name")
        with self.session_factory() as session:
            result = session.execute(
                update(DBSpace).where(DBSpace.id == space_id).values(name=name)
            )
            if result.rowcount == 0:
                raise NotFoundError("space", space_id)
            self._commit(session, "rename_space")
        return self.get_space(space_id)

    def delete_space(self, space_id: str) -> int:
        """Delete a space and, through the cascade, every node in it.

        Returns:
            Number of nodes removed with the space.

        Raises:
            ValidationError: For the default space, which must always exist.
            NotFoundError: If no space has this ID.
        """
        if space_id == DEFAULT_SPACE_ID:
            raise ValidationError(
                "The default space cannot be deleted",
                field="space_id",
                value=space_id,
                code=ErrorCode.PROTECTED_SPACE,
            )
        with self.session_factory() as session:
            node_count = session.scalar(
                select(func.count(DBNode.id)).where(DBNode.space_id == space_id)
            )
            result = session.execute(delete(DBSpace).where(DBSpace.id == space_id))
            if result.rowcount == 0:
                raise NotFoundError("space", space_id)
            self._commit(session, "delete_space")
        logger.info(f"Deleted space {space_id} with {node_count} nodes")
        return node_count or 0

    # ========== Nodes ==========

    def list_nodes(self, space_id: str) -> List[Node]:
        """Get all nodes of a space, ordered by sort_order."""
        with self.session_factory() as session:
            result = session.execute(
                select(DBNode)
                .where(DBNode.space_id == space_id)
                .order_by(DBNode.sort_order, DBNode.id)
            )
            return [self._db_node_to_model(db) for db in result.scalars().all()]

    def get_node(self, node_id: str) -> Node:
        """Get a node by ID.

        Raises:
            NotFoundError: If no node has this ID.
        """
        with self.session_factory() as session:
            db_node = session.get(DBNode, node_id)
            if db_node is None:
                raise NotFoundError("node", node_id)
            return self._db_node_to_model(db_node)

    def count_nodes(self, space_id: Optional[str] = None) -> int:
        """Count nodes, optionally restricted to one space."""
        with self.session_factory() as session:
            query = select(func.count(DBNode.id))
            if space_id is not None:
                query = query.where(DBNode.space_id == space_id)
            return session.scalar(query) or 0

    def create_node(self, node: Node) -> Node:
        """Create a node as the last child of its parent (or space root).

        The parent, when given, must already exist and live in the same
        space. Because a new node can only hang below an existing node, the
        forest stays cycle-free by construction.

        Raises:
            NotFoundError: If the space or parent does not exist.
            ValidationError: If the parent belongs to another space, or the ID is taken.
        """
        with self.session_factory() as session:
            if session.get(DBSpace, node.space_id) is None:
                raise NotFoundError("space", node.space_id)
            if session.get(DBNode, node.id) is not None:
                raise ValidationError(
                    f"Node '{node.id}' already exists", field="id", value=node.id
                )
            if node.parent_id is not None:
                self._check_parent(session, node.parent_id, node.space_id)

            db_node = DBNode(
                id=node.id,
                space_id=node.space_id,
                parent_id=node.parent_id,
                name=node.name,
                content=node.content,
                is_open=node.is_open,
                is_pinned=node.is_pinned,
                sort_order=self._next_sort_order(session, node.space_id, node.parent_id),
                created_at=format_timestamp(node.created_at) if node.created_at else None,
                updated_at=format_timestamp(node.updated_at) if node.updated_at else None,
            )
            session.add(db_node)
            self._commit(session, "create_node")
        logger.info(f"Created node {node.id} in space {node.space_id}")
        return self.get_node(node.id)

    def update_node(
        self,
        node_id: str,
        name: Optional[str] = None,
        content: Optional[str] = None,
        is_open: Optional[bool] = None,
        is_pinned: Optional[bool] = None,
        sort_order: Optional[int] = None,
    ) -> Node:
        """Update the supplied fields of a node.

        Only fields passed as non-None are written, so toggling ``is_open``
        does not touch ``updated_at``; writing ``name`` or ``content`` does.
        """
        values: Dict[str, object] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Node name cannot be empty", field="name")
            values["name"] = name
        if content is not None:
            values["content"] = content
        if is_open is not None:
            values["is_open"] = is_open
        if is_pinned is not None:
            values["is_pinned"] = is_pinned
        if sort_order is not None:
            values["sort_order"] = sort_order

        if not values:
            return self.get_node(node_id)

        with self.session_factory() as session:
            result = session.execute(
                update(DBNode).where(DBNode.id == node_id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("node", node_id)
            self._commit(session, "update_node")
        return self.get_node(node_id)

    def move_node(self, node_id: str, new_parent_id: Optional[str]) -> Node:
        """Re-parent a node within its space, appending it after its new siblings.

        Raises:
            NotFoundError: If the node or new parent does not exist.
            ValidationError: If the new parent is the node itself, one of its
                descendants, or in another space.
        """
        with self.session_factory() as session:
            db_node = session.get(DBNode, node_id)
            if db_node is None:
                raise NotFoundError("node", node_id)

            if new_parent_id is not None:
                self._check_parent(session, new_parent_id, db_node.space_id)
                # Walk up from the new parent; meeting the node means the
                # move would hang it below its own subtree
                current_id: Optional[str] = new_parent_id
                while current_id is not None:
                    if current_id == node_id:
                        raise ValidationError(
                            f"Moving '{node_id}' under '{new_parent_id}' would create a cycle",
                            field="parent_id",
                            value=new_parent_id,
                            code=ErrorCode.TREE_CYCLE,
                        )
                    current_id = session.scalar(
                        select(DBNode.parent_id).where(DBNode.id == current_id)
                    )

            sort_order = self._next_sort_order(session, db_node.space_id, new_parent_id)
            session.execute(
                update(DBNode)
                .where(DBNode.id == node_id)
                .values(parent_id=new_parent_id, sort_order=sort_order)
            )
            self._commit(session, "move_node")
        logger.info(f"Moved node {node_id} under {new_parent_id or 'space root'}")
        return self.get_node(node_id)

    def delete_node(self, node_id: str) -> int:
        """Delete a node and, through the cascade, its whole subtree.

        Returns:
            Number of nodes removed, including the node itself.
        """
        with self.session_factory() as session:
            db_node = session.get(DBNode, node_id)
            if db_node is None:
                raise NotFoundError("node", node_id)
            space_id = db_node.space_id
            before = session.scalar(
                select(func.count(DBNode.id)).where(DBNode.space_id == space_id)
            )
            session.execute(delete(DBNode).where(DBNode.id == node_id))
            after = session.scalar(
                select(func.count(DBNode.id)).where(DBNode.space_id == space_id)
            )
            self._commit(session, "delete_node")
        removed = (before or 0) - (after or 0)
        logger.info(f"Deleted node {node_id} ({removed} nodes removed)")
        return removed

    def get_tree(self, space_id: str) -> List[TreeNode]:
        """Build the nested tree of a space from its adjacency rows."""
        nodes = self.list_nodes(space_id)

        by_id = {n.id: TreeNode(node=n) for n in nodes}
        roots: List[TreeNode] = []

        for n in nodes:
            if n.parent_id is None:
                roots.append(by_id[n.id])
            elif n.parent_id in by_id:
                by_id[n.parent_id].children.append(by_id[n.id])
            else:
                # Parent outside the space: drop the row and its subtree
                logger.warning(f"Skipping node {n.id}: parent {n.parent_id} not in space {space_id}")

        return roots

    # ========== Helpers ==========

    @staticmethod
    def _check_parent(session: Session, parent_id: str, space_id: str) -> None:
        parent_space = session.scalar(
            select(DBNode.space_id).where(DBNode.id == parent_id)
        )
        if parent_space is None:
            raise NotFoundError("node", parent_id)
        if parent_space != space_id:
            raise ValidationError(
                f"Parent '{parent_id}' belongs to a different space",
                field="parent_id",
                value=parent_id,
                code=ErrorCode.CROSS_SPACE_PARENT,
            )

    @staticmethod
    def _next_sort_order(
        session: Session, space_id: str, parent_id: Optional[str]
    ) -> int:
        query = select(func.max(DBNode.sort_order))
        if parent_id is not None:
            query = query.where(DBNode.parent_id == parent_id)
        else:
            query = query.where(
                DBNode.space_id == space_id, DBNode.parent_id.is_(None)
            )
        current_max = session.scalar(query)
        return 0 if current_max is None else current_max + 1

    @staticmethod
    def _commit(session: Session, operation: str) -> None:
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ValidationError(
                f"Constraint violated during {operation}", value=str(e.orig)
            ) from e
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(
                f"Database write failed during {operation}",
                operation=operation,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    @staticmethod
    def _db_space_to_model(db_space: DBSpace) -> Space:
        return Space(id=db_space.id, name=db_space.name, sort_order=db_space.sort_order)

    @staticmethod
    def _db_node_to_model(db_node: DBNode) -> Node:
        return Node(
            id=db_node.id,
            space_id=db_node.space_id,
            parent_id=db_node.parent_id,
            name=db_node.name,
            content=db_node.content,
            is_open=bool(db_node.is_open),
            is_pinned=bool(db_node.is_pinned),
            sort_order=db_node.sort_order,
            created_at=parse_timestamp(db_node.created_at),
            updated_at=parse_timestamp(db_node.updated_at),
        )
