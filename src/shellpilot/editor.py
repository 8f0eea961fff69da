# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import re
from collections.abc import Mapping
from pathlib import Path, PurePath

import aiofiles
from loguru import logger

from shellpilot.errors import InvalidPathError
from shellpilot.models import Err, ErrorKind, LineOperation, LineOps, LineRange, Lines, Ok, Result, WholeFile

_NEWLINE = re.compile(r"\r?\n")


def split_lines(text: str) -> list[str]:
    """Split on `\\r\\n` or `\\n`. A trailing newline yields a trailing empty line."""
    return _NEWLINE.split(text)


def splice_range(lines: list[str], start_line: int, end_line: int, content: str) -> list[str]:
    """Replace the 1-based inclusive range [start_line, end_line] with the lines of `content`."""
    return lines[: start_line - 1] + split_lines(content) + lines[end_line:]


def apply_line_ops(lines: list[str], ops: Mapping[int, LineOperation]) -> list[str]:
    """Apply sparse line operations from the highest line number down.

    Going high to low means an insert or delete never shifts a line number that
    is still waiting to be applied, so every number refers to the original file.
    """
    result = list(lines)
    for number in sorted(ops, reverse=True):
        op = ops[number]
        index = number - 1
        if op.action == "insert":
            result[index:index] = split_lines(op.content or "")
        elif op.action == "replace":
            if index >= len(result):
                result.extend([""] * (index - len(result) + 1))
            result[index : index + 1] = split_lines(op.content or "")
        elif index < len(result):
            del result[index]
    return result


class FileEditor:
    """Applies model-specified edits to files under a working root.

    Relative paths resolve under `work_root` (the host directory mounted into the
    sandbox). Absolute paths are used as given. Writes are not atomic.
    """

    def __init__(self, work_root: Path):
        self.work_root = Path(work_root)

    def resolve(self, file: str) -> Path:
        """Map a model-supplied path to a host path.

        Raises:
            InvalidPathError: If the path is empty or contains a `..` segment.
        """
        if not file or not file.strip():
            raise InvalidPathError("File path is empty")
        if ".." in PurePath(file).parts:
            raise InvalidPathError(f"Invalid file path '{file}': '..' segments are not allowed")
        path = Path(file)
        return path if path.is_absolute() else self.work_root / path

    async def apply(self, file: str, spec: WholeFile | Lines | LineRange | LineOps) -> Result[Path]:
        """Apply one edit.

        Args:
            file: Path as given by the model.
            spec: The edit encoding.

        Returns:
            Ok(path) when the file was written, Err(EXECUTION) otherwise.
        """
        try:
            path = self.resolve(file)

            if isinstance(spec, (WholeFile, Lines)):
                await self._write(path, spec.content)
            elif isinstance(spec, LineRange):
                lines = split_lines(await self._read(path))
                await self._write(path, "\n".join(splice_range(lines, spec.start_line, spec.end_line, spec.content)))
            elif isinstance(spec, LineOps):
                text = await self._read(path) if path.exists() else ""
                # An empty file has no lines, same as a missing one.
                lines = split_lines(text) if text else []
                await self._write(path, "\n".join(apply_line_ops(lines, spec.ops)))
            else:
                raise TypeError(f"Unsupported edit spec: {type(spec).__name__}")
        except InvalidPathError as e:
            logger.warning(str(e))
            return Err(ErrorKind.EXECUTION, str(e))
        except FileNotFoundError:
            logger.error(f"File not found for range edit: {file}")
            return Err(ErrorKind.EXECUTION, f"File not found: {file}")
        except OSError as e:
            logger.error(f"Failed to update {file}: {e}")
            return Err(ErrorKind.EXECUTION, f"Failed to update {file}: {e}")

        logger.info(f"Applied {spec.kind} edit to {path}")
        return Ok(path)

    async def _read(self, path: Path) -> str:
        async with aiofiles.open(path, "r", encoding="utf-8", newline="") as f:
            return await f.read()

    async def _write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8", newline="") as f:
            await f.write(content)
