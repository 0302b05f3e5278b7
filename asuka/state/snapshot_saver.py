"""
Snapshot saver for persisting agent contexts to disk.

Writes an agent's final context and the transaction records it produced
as JSON so a retired agent's history survives the process.
"""

import json
from pathlib import Path
from typing import Iterable

from asuka.models.context import AgentContext
from asuka.models.transactions import TransactionRecord


class SnapshotSaver:
    """
    Saves agent snapshots to disk.

    Layout::

        <base_dir>/<agent_id>/context.json
        <base_dir>/<agent_id>/transactions.json
    """

    def __init__(self, base_dir: str = "logs/agents"):
        self.base_dir = base_dir

    def _get_agent_dir(self, agent_id: str) -> Path:
        safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in agent_id)
        return Path(self.base_dir) / safe_id

    def save(
        self,
        context: AgentContext,
        transactions: Iterable[TransactionRecord] = (),
    ) -> dict[str, str]:
        """
        Save a context snapshot and its transaction records.

        Returns:
            Dictionary of saved file paths
        """
        agent_dir = self._get_agent_dir(context.agent_id)
        agent_dir.mkdir(parents=True, exist_ok=True)

        context_path = agent_dir / "context.json"
        context_path.write_text(context.model_dump_json(indent=2), encoding="utf-8")

        records = [record.model_dump(mode="json") for record in transactions]
        transactions_path = agent_dir / "transactions.json"
        transactions_path.write_text(
            json.dumps({"agent_id": context.agent_id, "records": records}, indent=2),
            encoding="utf-8",
        )

        return {"context": str(context_path), "transactions": str(transactions_path)}

    def load_context(self, agent_id: str) -> AgentContext:
        """Read a previously saved context"""
        path = self._get_agent_dir(agent_id) / "context.json"
        return AgentContext.model_validate_json(path.read_text(encoding="utf-8"))
