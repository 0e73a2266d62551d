from datetime import datetime, timezone
from typing import Optional

from src.adapters.postgres.db import PostgresPool
from src.adapters.queue.writer import OutboxWriter
from src.domain.models.todo import TodoItem
from src.pipelines.todo_pipeline import TODO_CREATED, TODO_DELETED, TODO_UPDATED
from src.utils.logging import configure_logging


INSERT_TODO_SQL = """
INSERT INTO todos (uuid, description, due_date, file_id, created_at, updated_at)
VALUES (%s, %s, %s, %s, %s, %s);
"""

UPDATE_TODO_SQL = """
UPDATE todos
SET description = %s, due_date = %s, file_id = %s, updated_at = %s
WHERE uuid = %s;
"""

DELETE_TODO_SQL = "DELETE FROM todos WHERE uuid = %s;"


class TodoNotFound(LookupError):
    pass


class TodoService:
    """Todo writes that stage their ``todo.*`` event in the same transaction."""

    def __init__(self, pool: PostgresPool, writer: OutboxWriter):
        self.pool = pool
        self.writer = writer
        self.log = configure_logging("todo_service")

    def create_todo(self, description: str, due_date: Optional[datetime] = None, file_id: Optional[str] = None) -> TodoItem:
        todo = TodoItem(description=description, due_date=due_date, file_id=file_id)
        with self.pool.transaction() as tx:
            with tx.cursor() as cur:
                cur.execute(
                    INSERT_TODO_SQL,
                    (todo.uuid, todo.description, todo.due_date, todo.file_id, todo.created_at, todo.updated_at),
                )
            outbox_id = self.writer.emit(tx, "todo", todo.uuid, TODO_CREATED, todo.to_payload())
        self.log.info("Created todo", extra={"todo_id": todo.uuid, "outbox_id": outbox_id})
        return todo

    def update_todo(self, todo: TodoItem) -> TodoItem:
        todo.updated_at = datetime.now(timezone.utc)
        with self.pool.transaction() as tx:
            with tx.cursor() as cur:
                cur.execute(UPDATE_TODO_SQL, (todo.description, todo.due_date, todo.file_id, todo.updated_at, todo.uuid))
                if cur.rowcount == 0:
                    raise TodoNotFound(todo.uuid)
            self.writer.emit(tx, "todo", todo.uuid, TODO_UPDATED, todo.to_payload())
        return todo

    def delete_todo(self, todo_id: str) -> None:
        with self.pool.transaction() as tx:
            with tx.cursor() as cur:
                cur.execute(DELETE_TODO_SQL, (todo_id,))
                if cur.rowcount == 0:
                    raise TodoNotFound(todo_id)
            self.writer.emit(tx, "todo", todo_id, TODO_DELETED, {"id": todo_id})
