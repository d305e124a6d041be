"""
Line-file queue backend.

`.queue` holds one absolute path per line, head first. Every
read-modify-write holds an exclusive advisory lock and rewrites the file
through a temp file and rename, so a crash leaves either the old or the new
order on disk. Per-entry overrides (model, subtitle stream) live in
`.queue_options` as a JSON object keyed by path, guarded by the same lock.
`.currently_processing` holds the in-flight path; its mtime is the start
instant.
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .base import QueueAdapter, exclusive_lock, merge_order, read_lines, write_lines
from ..models import QueueEntry
from ..pipeline.util import PathLike, remove_quietly

logger = logging.getLogger("atci")


class FileQueueAdapter(QueueAdapter):
    """Queue stored as plain line files in the data area"""

    def _read_options(self) -> Dict[str, Dict[str, Any]]:
        try:
            with open(self.paths.queue_options_file, "r", encoding="utf-8") as f:
                options = json.load(f)
        except FileNotFoundError:
            return {}
        except ValueError as e:
            logger.warning(f"Ignoring unreadable queue options: {e}")
            return {}
        return options if isinstance(options, dict) else {}

    def _write_options(self, options: Dict[str, Dict[str, Any]], queued: Iterable[str]) -> None:
        """Persist overrides for the paths still queued; the file goes away when none are left"""
        queued = set(queued)
        kept = {path: value for path, value in options.items() if path in queued}
        options_file = self.paths.queue_options_file
        if not kept:
            remove_quietly(options_file)
            return
        tmp_path = options_file.with_name(options_file.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(kept, f, indent=2)
        os.replace(tmp_path, options_file)

    @staticmethod
    def _entry(path: str, options: Dict[str, Dict[str, Any]]) -> QueueEntry:
        value = options.get(path) or {}
        return QueueEntry(
            path=path,
            model=value.get("model"),
            subtitle_stream_index=value.get("subtitle_stream_index"),
        )

    def get(self) -> List[str]:
        return read_lines(self.paths.queue_file)

    def entries(self) -> List[QueueEntry]:
        with exclusive_lock(self.paths.queue_file):
            options = self._read_options()
            return [self._entry(path, options) for path in read_lines(self.paths.queue_file)]

    def append(self, path: PathLike, model: Optional[str] = None,
               subtitle_stream_index: Optional[int] = None) -> bool:
        path = str(path).strip()
        if not path:
            return False

        queue_file = self.paths.queue_file
        with exclusive_lock(queue_file):
            if self.is_processing(path):
                logger.debug(f"Not queueing {path}: currently processing")
                return False
            entries = read_lines(queue_file)
            if path in entries:
                return False
            entries.append(path)
            if model is not None or subtitle_stream_index is not None:
                options = self._read_options()
                options[path] = {"model": model, "subtitle_stream_index": subtitle_stream_index}
                self._write_options(options, entries)
            write_lines(queue_file, entries)

        logger.info(f"QUEUED: {path}")
        return True

    def set(self, paths: Iterable[PathLike]) -> List[str]:
        queue_file = self.paths.queue_file
        with exclusive_lock(queue_file):
            merged = merge_order([str(p) for p in paths], read_lines(queue_file))
            write_lines(queue_file, merged)
        logger.info(f"Queue reordered: {len(merged)} entries")
        return merged

    def peek_head(self) -> Optional[str]:
        entries = self.get()
        return entries[0] if entries else None

    def _take_head(self, claim: bool) -> Optional[QueueEntry]:
        queue_file = self.paths.queue_file
        with exclusive_lock(queue_file):
            try:
                with open(queue_file, "r", encoding="utf-8") as f:
                    lines = [line.rstrip("\n") for line in f]
            except FileNotFoundError:
                return None

            # Blank lines ahead of the head are dropped along with it
            while lines and not lines[0].strip():
                lines.pop(0)
            if not lines:
                write_lines(queue_file, [])
                return None

            options = self._read_options()
            head = self._entry(lines.pop(0).strip(), options)
            remaining = [line.strip() for line in lines if line.strip()]
            if claim:
                self.mark_processing(head.path)
            write_lines(queue_file, remaining)
            if head.path in options:
                self._write_options(options, remaining)
        return head

    def pop_head(self) -> Optional[str]:
        head = self._take_head(claim=False)
        return head.path if head else None

    def claim_head(self) -> Optional[QueueEntry]:
        return self._take_head(claim=True)

    def mark_processing(self, path: PathLike) -> None:
        processing_file = self.paths.processing_file
        tmp_path = processing_file.with_name(processing_file.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(str(path))
        os.replace(tmp_path, processing_file)

    def clear_processing(self) -> None:
        if remove_quietly(self.paths.processing_file):
            logger.debug("Cleared currently processing record")

    def processing(self) -> Optional[Tuple[str, float]]:
        processing_file = self.paths.processing_file
        try:
            with open(processing_file, "r", encoding="utf-8") as f:
                path = f.read().strip()
            started = processing_file.stat().st_mtime
        except FileNotFoundError:
            return None
        return path, started
