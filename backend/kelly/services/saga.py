import logging
from typing import Awaitable, Callable, List, Tuple

logger = logging.getLogger(__name__)

UndoStep = Callable[[], Awaitable[None]]


class CompensatingTransaction:
    """Ordered undo list for a chain of separately committed writes.

    Each step pushes its compensation right after it succeeds. If the block
    exits with an exception, compensations run newest first and the exception
    propagates unchanged. ``commit()`` forgets the undo list.

        async with CompensatingTransaction("create_lot") as tx:
            lot = await create_lot()
            tx.push("delete lot", lambda: delete_lot(lot.id))
            await add_members(lot.id)
            tx.commit()
    """

    def __init__(self, name: str):
        self.name = name
        self._undo: List[Tuple[str, UndoStep]] = []
        self.compensated: List[str] = []
        self.failed: List[str] = []

    def push(self, description: str, undo: UndoStep) -> None:
        self._undo.append((description, undo))

    def commit(self) -> None:
        self._undo.clear()

    @property
    def pending(self) -> List[str]:
        return [description for description, _ in self._undo]

    async def rollback(self) -> None:
        while self._undo:
            description, undo = self._undo.pop()
            try:
                await undo()
            except Exception:
                # Keep unwinding; the orphan is reported through ``failed``
                logger.error(f"[{self.name}] compensation '{description}' failed", exc_info=True)
                self.failed.append(description)
            else:
                logger.info(f"[{self.name}] compensated: {description}")
                self.compensated.append(description)

    async def __aenter__(self) -> "CompensatingTransaction":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and self._undo:
            logger.warning(f"[{self.name}] step failed ({exc_type.__name__}), running {len(self._undo)} compensation(s)")
            await self.rollback()
        return False
