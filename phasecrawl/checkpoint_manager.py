"""
Checkpoint Manager for Discovery Runs
=====================================

Persists the discovery loop state every ``save_interval`` phases so a long
crawl leaves a usable snapshot behind even if it is interrupted.

Usage:
------
checkpoint_mgr = CheckpointManager("./output")
checkpoint_mgr.save_checkpoint(phase=10, discoveries=loop.discovered, tensions=loop.tensions)
snapshot = checkpoint_mgr.load_checkpoint()
"""

import json
import logging
import os
import time
from typing import Any, Dict, List, Mapping, Optional

from .models import Discovery

CHECKPOINT_FILENAME = "checkpoint.json"


class CheckpointManager:
    """Writes and reads ``outputDir/checkpoint.json``."""

    def __init__(self, output_dir: str = "./output"):
        self.output_dir = output_dir
        self.logger = logging.getLogger("phasecrawl.checkpoint")

    @property
    def checkpoint_path(self) -> str:
        return os.path.join(self.output_dir, CHECKPOINT_FILENAME)

    def save_checkpoint(
        self,
        phase: int,
        discoveries: Mapping[str, Discovery],
        tensions: List[float],
    ) -> bool:
        """
        Save a snapshot of the loop state.

        Args:
            phase: Phase counter after the increment
            discoveries: url -> Discovery map
            tensions: Tension history in phase order

        Returns:
            True when the file was written
        """
        checkpoint = {
            "phase": phase,
            "discoverySet": [[url, d.to_dict()] for url, d in discoveries.items()],
            "tensionMap": list(tensions),
            "timestamp": int(time.time() * 1000),
        }

        try:
            os.makedirs(self.output_dir, exist_ok=True)
            with open(self.checkpoint_path, 'w') as f:
                json.dump(checkpoint, f, indent=2)
            self.logger.info(f"💾 Checkpoint saved at phase {phase} ({len(discoveries)} discoveries)")
            return True
        except (OSError, TypeError, ValueError) as e:
            self.logger.warning(f"⚠️ Failed to save checkpoint: {e}")
            return False

    def load_checkpoint(self) -> Optional[Dict[str, Any]]:
        """Load the last snapshot, or None when absent or unreadable."""
        if not os.path.exists(self.checkpoint_path):
            self.logger.info(f"📭 No checkpoint found in {self.output_dir}")
            return None

        try:
            with open(self.checkpoint_path, 'r') as f:
                checkpoint = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"❌ Failed to load checkpoint: {e}")
            return None

        self.logger.info(f"📦 Checkpoint loaded (phase {checkpoint.get('phase')})")
        return checkpoint
