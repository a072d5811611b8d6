"""
Per-filesystem disk space accounting.

Mounted filesystems are read once per transaction from /proc/mounts and
snapshotted with statvfs(). File operations then adjust the blocks and
inodes each filesystem needs; needed blocks are inflated by 5% for the
root-reserved space before being compared with what is available.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .flags import FileAction

logger = logging.getLogger(__name__)

MOUNTS_FILE = Path('/proc/mounts')


def adj_fs_blocks(blocks: int) -> int:
    """Inflate a block count by the 5% root-reserve factor."""
    return (blocks * 21) // 20


def block_round(size: int, block: int) -> int:
    """Convert a byte count into whole filesystem blocks (ceiling)."""
    return (size + block - 1) // block


@dataclass
class DiskSpaceInfo:
    """Usage of one backing device. Availability of -1 means unknown."""
    dev: int
    mount_point: str
    bsize: int
    bavail: int
    iavail: int
    bneeded: int = 0
    ineeded: int = 0

    def missing_blocks(self) -> int:
        if self.bavail < 0:
            return 0
        return max(0, adj_fs_blocks(self.bneeded) - self.bavail)

    def missing_inodes(self) -> int:
        if self.iavail < 0:
            return 0
        return max(0, adj_fs_blocks(self.ineeded) - self.iavail)


def read_mount_points(mounts_file: Path = MOUNTS_FILE) -> List[str]:
    """List mount points from a /proc/mounts style file."""
    mount_points = []
    with open(mounts_file, 'r') as f:
        for line in f:
            parts = line.split()
            if len(parts) >= 2:
                # /proc/mounts escapes spaces as \040
                mount_points.append(parts[1].replace('\\040', ' '))
    return mount_points


class DiskSpaceMonitor:
    """Tracks blocks and inodes needed per filesystem."""

    def __init__(self, mounts_file: Path = MOUNTS_FILE,
                 stat: Callable = os.stat, statvfs: Callable = os.statvfs):
        self.mounts_file = Path(mounts_file)
        self._stat = stat
        self._statvfs = statvfs
        self._dsi: Dict[int, DiskSpaceInfo] = {}
        self._mounts: Dict[str, int] = {}
        self.initialized = False

    def init(self) -> int:
        """Snapshot available blocks and inodes of every mounted filesystem.

        Returns:
            0 on success, 1 if the mount table could not be read
        """
        self._dsi.clear()
        self._mounts.clear()
        self.initialized = False

        try:
            mount_points = read_mount_points(self.mounts_file)
        except OSError as e:
            logger.error(f"Cannot read mount table {self.mounts_file}: {e}")
            return 1

        for mount_point in mount_points:
            try:
                dev = self._stat(mount_point).st_dev
                if dev in self._dsi:
                    self._mounts[mount_point] = dev
                    continue
                sfb = self._statvfs(mount_point)
            except OSError as e:
                logger.warning(f"Skipping filesystem {mount_point}: {e}")
                continue

            bavail = sfb.f_bavail if sfb.f_blocks else -1
            iavail = sfb.f_ffree if (sfb.f_ffree or sfb.f_files) else -1
            self._dsi[dev] = DiskSpaceInfo(
                dev=dev,
                mount_point=mount_point,
                bsize=sfb.f_bsize or 1,
                bavail=bavail,
                iavail=iavail,
            )
            self._mounts[mount_point] = dev

        self.initialized = True
        logger.debug(f"Disk space info for {len(self._dsi)} filesystems")
        return 0

    def add_filesystem(self, dev: int, mount_point: str, bsize: int,
                       bavail: int, iavail: int = -1) -> DiskSpaceInfo:
        """Register a filesystem by hand (chroots, tests)."""
        dsi = DiskSpaceInfo(dev=dev, mount_point=mount_point, bsize=bsize,
                            bavail=bavail, iavail=iavail)
        self._dsi[dev] = dsi
        self._mounts[mount_point] = dev
        self.initialized = True
        return dsi

    def get(self, dev: int) -> Optional[DiskSpaceInfo]:
        return self._dsi.get(dev)

    @property
    def filesystems(self) -> List[DiskSpaceInfo]:
        return list(self._dsi.values())

    def device_for(self, path: str) -> Optional[int]:
        """Return the device of the longest mount point containing path."""
        best_dev = None
        best_len = -1
        for mount_point, dev in self._mounts.items():
            prefix = mount_point.rstrip('/') + '/'
            if (path == mount_point or path.startswith(prefix)) and len(mount_point) > best_len:
                best_dev = dev
                best_len = len(mount_point)
        return best_dev

    def update(self, dev: int, file_size: int, prev_size: int, fixup_size: int,
               action: FileAction) -> Optional[DiskSpaceInfo]:
        """Account for one file operation on the filesystem of dev.

        Returns:
            The updated entry, or None for an unknown device
        """
        if not self.initialized:
            raise RuntimeError("disk space info used before init()")
        dsi = self._dsi.get(dev)
        if dsi is None:
            return None

        bneeded = block_round(file_size, dsi.bsize)

        if action in (FileAction.BACKUP, FileAction.SAVE, FileAction.ALTNAME):
            dsi.ineeded += 1
            dsi.bneeded += bneeded
        elif action == FileAction.CREATE:
            dsi.bneeded += bneeded
            dsi.bneeded -= block_round(prev_size, dsi.bsize)
            if not prev_size:
                dsi.ineeded += 1
        elif action == FileAction.ERASE:
            dsi.ineeded -= 1
            dsi.bneeded -= bneeded

        if fixup_size:
            dsi.bneeded -= block_round(fixup_size, dsi.bsize)
        return dsi

    def clear_needs(self):
        """Forget accounted needs, keeping the availability snapshot."""
        for dsi in self._dsi.values():
            dsi.bneeded = 0
            dsi.ineeded = 0

    def reset(self):
        self._dsi.clear()
        self._mounts.clear()
        self.initialized = False
