"""MakeMKV service for drive listing, disc analysis and ripping."""

import asyncio
import csv
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

import structlog

from boz_series.core.config import MakeMKVConfig
from boz_series.models.disc import RippedTrack

logger = structlog.get_logger()

# Timeout constants
DRIVE_LIST_TIMEOUT = 30  # seconds to list drives
ANALYZE_TIMEOUT = 300  # seconds to analyze disc (copy protection can be slow)
ANALYZE_RETRIES = 3
ANALYZE_RETRY_DELAY = 5  # seconds between retries
RIP_STALL_TIMEOUT = 300  # 5 minutes with no output = stalled

# MakeMKV attribute codes used in CINFO/TINFO lines
ATTR_TYPE = 1
ATTR_NAME = 2
ATTR_CHAPTERS = 8
ATTR_DURATION = 9
ATTR_SIZE_BYTES = 11
ATTR_SOURCE_FILE = 16
ATTR_OUTPUT_FILE = 27

ProgressCallback = Callable[[float], Awaitable[None]]


@dataclass
class DriveInfo:
    """An optical drive as listed by MakeMKV."""

    index: int
    drive_name: str
    disc_name: str
    device_path: str
    has_disc: bool


@dataclass
class DiscAnalysis:
    """Result of analyzing a disc with MakeMKV."""

    disc_name: str
    disc_type: str  # "DVD" or "Blu-ray disc"
    disc_index: int
    tracks: list[RippedTrack] = field(default_factory=list)

    @property
    def main_feature(self) -> Optional[RippedTrack]:
        """Return the likely main feature (longest title)."""
        if not self.tracks:
            return None
        return max(self.tracks, key=lambda t: t.duration_seconds)


class MakeMKVService:
    """Interface to the makemkvcon command-line tool in robot mode."""

    def __init__(self, config: MakeMKVConfig):
        self.config = config
        self._executable = config.executable
        self._temp_dir = Path(config.temp_dir)

    def is_available(self) -> bool:
        """Check if MakeMKV is installed and accessible."""
        return Path(self._executable).exists() or shutil.which(self._executable) is not None

    async def list_drives(self) -> list[DriveInfo]:
        """
        List optical drives and the discs in them.

        Asking for an invalid disc index makes MakeMKV print its drive table.
        """
        self._require_executable()

        cmd = [self._executable, "-r", "--cache=1", "info", "disc:9999"]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=DRIVE_LIST_TIMEOUT)
        except asyncio.TimeoutError:
            logger.error("drive_list_timeout", timeout=DRIVE_LIST_TIMEOUT)
            process.kill()
            await process.wait()
            raise RuntimeError(f"MakeMKV drive listing timed out after {DRIVE_LIST_TIMEOUT}s")

        drives = self.parse_drive_lines(stdout.decode("utf-8", errors="replace"))
        logger.debug("drives_listed", drives=len(drives), with_disc=sum(1 for d in drives if d.has_disc))
        return drives

    async def analyze_disc(self, disc_index: int) -> DiscAnalysis:
        """Analyze a disc and return its titles longer than min_title_length.

        Args:
            disc_index: MakeMKV disc index (from list_drives)

        Raises:
            RuntimeError: If every attempt failed
        """
        self._require_executable()
        logger.info("analyzing_disc", disc_index=disc_index)

        last_error: Optional[RuntimeError] = None
        for attempt in range(1, ANALYZE_RETRIES + 1):
            try:
                return await self._analyze_disc_attempt(disc_index, attempt)
            except RuntimeError as e:
                last_error = e
                if attempt < ANALYZE_RETRIES:
                    logger.warning(
                        "analyze_disc_retry",
                        disc_index=disc_index,
                        attempt=attempt,
                        max_attempts=ANALYZE_RETRIES,
                        error=str(e),
                    )
                    await asyncio.sleep(ANALYZE_RETRY_DELAY)
                else:
                    logger.error("analyze_disc_all_retries_failed", disc_index=disc_index, attempts=ANALYZE_RETRIES)

        raise last_error

    async def _analyze_disc_attempt(self, disc_index: int, attempt: int) -> DiscAnalysis:
        cmd = [self._executable, "-r", "--noscan", "info", f"disc:{disc_index}"]

        logger.debug("analyze_disc_cmd", cmd=" ".join(cmd), attempt=attempt)
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=ANALYZE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.error("analyze_disc_timeout", disc_index=disc_index, timeout=ANALYZE_TIMEOUT, attempt=attempt)
            process.kill()
            await process.wait()
            raise RuntimeError(f"MakeMKV analysis timed out after {ANALYZE_TIMEOUT}s")

        if process.returncode != 0:
            error_text = stderr.decode("utf-8", errors="replace")
            logger.error(
                "makemkv_analysis_failed",
                disc_index=disc_index,
                returncode=process.returncode,
                stderr=error_text,
                attempt=attempt,
            )
            raise RuntimeError(f"MakeMKV analysis failed: {error_text}")

        analysis = self.parse_info_output(stdout.decode("utf-8", errors="replace"), disc_index)
        logger.info(
            "disc_analyzed",
            disc_index=disc_index,
            disc_name=analysis.disc_name,
            track_count=len(analysis.tracks),
            attempt=attempt,
        )
        return analysis

    async def rip_title(
        self,
        disc_index: int,
        track: RippedTrack,
        output_dir: Optional[Path] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Path:
        """Rip one title from the disc.

        Args:
            disc_index: MakeMKV disc index
            track: Track to rip
            output_dir: Directory for output file (temp_dir if not given)
            progress_callback: Awaited with the percentage as it changes

        Returns:
            Path to the ripped MKV file

        Raises:
            RuntimeError: If MakeMKV fails, stalls or produces no file
        """
        self._require_executable()

        output_dir = output_dir or self._temp_dir
        output_dir.mkdir(parents=True, exist_ok=True)
        started_files = set(output_dir.glob("*.mkv"))

        cmd = [
            self._executable,
            "-r",
            "--noscan",
            "--progress=-same",
            "mkv",
            f"disc:{disc_index}",
            str(track.index),
            str(output_dir),
        ]

        logger.info("ripping_title", disc_index=disc_index, title_index=track.index, output_dir=str(output_dir))
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

        last_progress_log = 0
        lines_received = 0
        stall_detected = False

        while True:
            try:
                line = await asyncio.wait_for(process.stdout.readline(), timeout=RIP_STALL_TIMEOUT)
            except asyncio.TimeoutError:
                logger.error(
                    "makemkv_stall_detected",
                    pid=process.pid,
                    timeout=RIP_STALL_TIMEOUT,
                    lines_received=lines_received,
                )
                stall_detected = True
                process.kill()
                await process.wait()
                break

            if not line:
                break
            lines_received += 1

            line_str = line.decode("utf-8", errors="replace").strip()
            if line_str.startswith("PRGV:"):
                progress = self._parse_progress(line_str)
                if progress is not None:
                    if int(progress / 10) > last_progress_log:
                        last_progress_log = int(progress / 10)
                        logger.info("rip_progress", title_index=track.index, progress=f"{progress:.1f}%")
                    if progress_callback:
                        await progress_callback(progress)
            elif line_str.startswith("MSG:"):
                logger.debug("makemkv_msg", msg=line_str)

        if stall_detected:
            raise RuntimeError(f"MakeMKV stalled - no output for {RIP_STALL_TIMEOUT} seconds")

        await process.wait()
        if process.returncode != 0:
            raise RuntimeError(f"MakeMKV rip failed with code {process.returncode}")

        output_file = self._find_output_file(output_dir, track, started_files)
        track.output_path = str(output_file)
        logger.info("rip_completed", title_index=track.index, output_file=str(output_file))
        return output_file

    @staticmethod
    def _find_output_file(output_dir: Path, track: RippedTrack, existing: set[Path]) -> Path:
        """The file MakeMKV announced for the title, else the newest new MKV."""
        if track.output_file_name:
            expected = output_dir / track.output_file_name
            if expected.exists():
                return expected

        new_files = [p for p in output_dir.glob("*.mkv") if p not in existing]
        if not new_files:
            raise RuntimeError("No MKV file produced")
        return max(new_files, key=lambda p: p.stat().st_mtime)

    def _require_executable(self) -> None:
        if not self.is_available():
            raise RuntimeError(f"MakeMKV not found at {self._executable}")

    @staticmethod
    def parse_drive_lines(output: str) -> list[DriveInfo]:
        """
        Parse DRV lines.

        Format: DRV:index,visible,enabled,flags,"drive_name","disc_name","device"
        Example: DRV:0,2,999,1,"BD-RE HL-DT-ST BD-RE BH16NS40","OFFICE","/dev/sr0"
        """
        drives = []
        for line in output.splitlines():
            line = line.strip()
            if not line.startswith("DRV:"):
                continue

            parts = next(csv.reader([line[4:]]))
            if len(parts) < 7 or not parts[0].isdigit():
                continue

            drive_name, disc_name, device_path = parts[4], parts[5], parts[6]
            if not drive_name and not device_path:
                continue  # Unused slot

            visible = int(parts[1]) if parts[1].isdigit() else 0
            drives.append(
                DriveInfo(
                    index=int(parts[0]),
                    drive_name=drive_name,
                    disc_name=disc_name,
                    device_path=device_path,
                    has_disc=visible > 0 and bool(disc_name),
                )
            )
        return drives

    def parse_info_output(self, output: str, disc_index: int) -> DiscAnalysis:
        """Parse MakeMKV robot-mode info output."""
        analysis = DiscAnalysis(disc_name="Unknown", disc_type="Unknown", disc_index=disc_index)
        tracks: dict[int, RippedTrack] = {}

        for line in output.splitlines():
            line = line.strip()

            # Disc info: CINFO:code,flags,"value"
            if line.startswith("CINFO:"):
                parts = line[6:].split(",", 2)
                if len(parts) >= 3 and parts[0].isdigit():
                    code = int(parts[0])
                    value = parts[2].strip('"')
                    if code == ATTR_NAME:
                        analysis.disc_name = value
                    elif code == ATTR_TYPE:
                        analysis.disc_type = value

            # Title info: TINFO:title,code,flags,"value"
            elif line.startswith("TINFO:"):
                parts = line[6:].split(",", 3)
                if len(parts) < 4 or not parts[0].isdigit() or not parts[1].isdigit():
                    continue

                title_idx = int(parts[0])
                code = int(parts[1])
                value = parts[3].strip('"')

                track = tracks.setdefault(
                    title_idx,
                    RippedTrack(index=title_idx, name=f"Title {title_idx}", duration_seconds=0),
                )

                if code == ATTR_NAME:
                    track.name = value
                elif code == ATTR_DURATION:
                    track.duration_seconds = self._parse_duration(value)
                elif code == ATTR_SIZE_BYTES:
                    track.size_bytes = int(value) if value.isdigit() else 0
                elif code == ATTR_CHAPTERS:
                    track.chapters = int(value) if value.isdigit() else 0
                elif code == ATTR_SOURCE_FILE:
                    track.source_file_name = value or None
                elif code == ATTR_OUTPUT_FILE:
                    track.output_file_name = value or None

        min_length = self.config.min_title_length
        analysis.tracks = sorted(
            (t for t in tracks.values() if t.duration_seconds >= min_length),
            key=lambda t: t.index,
        )
        return analysis

    @staticmethod
    def _parse_duration(duration_str: str) -> int:
        """Parse H:MM:SS to seconds."""
        match = re.match(r"(\d+):(\d+):(\d+)", duration_str)
        if match:
            hours, minutes, seconds = map(int, match.groups())
            return hours * 3600 + minutes * 60 + seconds
        return 0

    @staticmethod
    def _parse_progress(line: str) -> Optional[float]:
        """Parse PRGV:current,total,max; 'total' is the overall title progress."""
        match = re.match(r"PRGV:(\d+),(\d+),(\d+)", line)
        if match:
            _, total, max_val = map(int, match.groups())
            if max_val > 0:
                return (total / max_val) * 100
        return None
