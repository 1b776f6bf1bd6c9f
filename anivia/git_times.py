"""
File timestamps from Git history.

A note's created time is the author date of the first commit that touched
it (following renames), its modified time that of the latest commit.
Files outside a repository or never committed have no Git timestamps.
"""

import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class GitTimestamps:
    """Reads created/modified times for files from ``git log``."""

    def __init__(self, git: str = "git"):
        self.git = git

    def _run_git(self, cwd: Path, *args: str) -> subprocess.CompletedProcess:
        """Run a git command in ``cwd``."""
        cmd = [self.git, "-C", str(cwd)] + list(args)
        logger.debug("Running: %s", " ".join(cmd))
        return subprocess.run(cmd, capture_output=True, text=True, check=True)

    def times_for(self, path: Path) -> tuple[Optional[datetime], Optional[datetime]]:
        """
        Get (created, modified) author dates for a file.

        Returns:
            Both None when git is unavailable or the file has no history.
        """
        path = Path(path).resolve()
        try:
            result = self._run_git(path.parent, "log", "--follow", "--format=%aI", "--", path.name)
        except (OSError, subprocess.CalledProcessError) as e:
            logger.debug("No git history for %s: %s", path, e)
            return None, None

        # newest first
        stamps = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not stamps:
            return None, None

        try:
            return datetime.fromisoformat(stamps[-1]), datetime.fromisoformat(stamps[0])
        except ValueError:
            logger.debug("Unparseable git dates for %s: %r", path, stamps)
            return None, None
