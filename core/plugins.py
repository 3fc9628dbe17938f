"""Correlation of identified products with vulnerability templates.

Templates live in `<template_root>/<fingerprint name>/`. When any matched
product has such a directory, the external template tool (nuclei) is run
once against the target with all of them and the ids of the templates that
fired are collected from its JSON-lines output.
"""
import asyncio
import json
import logging
import os
import shutil
import subprocess
from typing import Iterable, List, Optional, Set

from core.errors import MalformedRecord, ToolInvocationError

logger = logging.getLogger(__name__)

# Older tool releases emit the id under a hyphenated key
LEGACY_ID_FIELD = '"template-id"'
ID_FIELD = "template_id"


def has_tool(tool: str = "nuclei") -> bool:
    """Check whether the template tool is on PATH."""
    return shutil.which(tool) is not None


class TemplateRunner:
    """Runs the template tool and returns its stdout."""

    def run(self, args: List[str]) -> str:
        raise NotImplementedError


class NucleiRunner(TemplateRunner):
    def __init__(self, tool: str = "nuclei", timeout: Optional[float] = None):
        self.tool = tool
        self.timeout = timeout

    def run(self, args: List[str]) -> str:
        command = [self.tool, *args]
        logger.debug(f"Running {' '.join(command)}")
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ToolInvocationError(f"{self.tool} not found") from e
        except subprocess.TimeoutExpired as e:
            raise ToolInvocationError(f"{self.tool} timed out after {self.timeout}s") from e
        except OSError as e:
            raise ToolInvocationError(f"Cannot run {self.tool}: {e}") from e

        if completed.returncode != 0:
            logger.debug(f"{self.tool} exited with {completed.returncode}: {completed.stderr.strip()}")
        return completed.stdout


def parse_record(line: str) -> str:
    """Extract the template id from one JSON line of tool output."""
    try:
        record = json.loads(line.replace(LEGACY_ID_FIELD, f'"{ID_FIELD}"'))
    except json.JSONDecodeError as e:
        raise MalformedRecord(f"Invalid JSON: {e}") from e
    if not isinstance(record, dict) or not isinstance(record.get(ID_FIELD), str):
        raise MalformedRecord(f"No {ID_FIELD} in record")
    return record[ID_FIELD]


def parse_output(output: str) -> Set[str]:
    """Template ids from newline-delimited JSON, skipping malformed lines."""
    template_ids: Set[str] = set()
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            template_ids.add(parse_record(line))
        except MalformedRecord as e:
            logger.debug(f"Skipping tool output line: {e}")
    return template_ids


def build_arguments(target: str, template_dirs: Iterable[str]) -> List[str]:
    args = ["-u", target, "-no-color"]
    for template_dir in template_dirs:
        args.extend(["-t", template_dir])
    args.extend(["-silent", "-json"])
    return args


class PluginCorrelator:
    """Maps matched product names to templates and runs them."""

    def __init__(self, template_root: str, runner: Optional[TemplateRunner] = None):
        self.template_root = template_root
        self.runner = runner or NucleiRunner()

    def find_template_dirs(self, matched_names: Iterable[str]) -> List[str]:
        """Template directories for the matched names; missing ones are expected."""
        root = os.path.realpath(self.template_root)
        dirs = []
        for name in sorted(matched_names):
            path = os.path.join(self.template_root, name)
            resolved = os.path.realpath(path)
            # Names come from the rule database and must stay inside the root
            if resolved == root or os.path.commonpath([root, resolved]) != root:
                logger.debug(f"Ignoring template name {name!r} outside {self.template_root}")
                continue
            if os.path.isdir(path):
                dirs.append(path)
        return dirs

    async def correlate(self, target: str, matched_names: Iterable[str]) -> Set[str]:
        template_dirs = self.find_template_dirs(matched_names)
        if not template_dirs:
            return set()

        logger.info(f"Running {len(template_dirs)} template set(s) against {target}")
        loop = asyncio.get_running_loop()
        try:
            output = await loop.run_in_executor(None, self.runner.run, build_arguments(target, template_dirs))
        except ToolInvocationError as e:
            logger.warning(f"Plugin correlation failed for {target}: {e}")
            return set()

        template_ids = parse_output(output)
        logger.debug(f"{target}: {len(template_ids)} template(s) fired")
        return template_ids
