"""Polling loop and the per-disc pipeline."""

import asyncio
from pathlib import Path
from typing import Optional

import structlog

from boz_series.core.config import Settings
from boz_series.core.errors import StatePersistenceError
from boz_series.models.media import MediaIdentity, MediaType
from boz_series.services.continuity import ContinuityCoordinator
from boz_series.services.episode_metadata import EpisodeMetadataService
from boz_series.services.identification import MediaIdentifier
from boz_series.services.makemkv import DiscAnalysis, DriveInfo, MakeMKVService
from boz_series.services.media_namer import MediaNamer

logger = structlog.get_logger()

# Consecutive state write failures before the operator is alerted
PERSISTENCE_ESCALATION_THRESHOLD = 3


class DiscProcessor:
    """Takes one disc from analysis to a finalized series state.

    analyze -> identify -> plan -> assign -> rip -> organize -> finalize
    """

    def __init__(
        self,
        settings: Settings,
        makemkv: MakeMKVService,
        identifier: MediaIdentifier,
        coordinator: ContinuityCoordinator,
        namer: MediaNamer,
        metadata: Optional[EpisodeMetadataService] = None,
    ):
        self.settings = settings
        self.makemkv = makemkv
        self.identifier = identifier
        self.coordinator = coordinator
        self.namer = namer
        self.metadata = metadata

    async def process(self, drive: DriveInfo) -> bool:
        """
        Process the disc in a drive.

        Returns:
            True if the disc is done with (ripped, skipped or nothing to rip),
            False if it should be retried on the next poll

        Raises:
            StatePersistenceError: If the series state could not be written
        """
        logger.info("disc_processing_started", drive=drive.device_path or drive.drive_name, disc=drive.disc_name)

        try:
            analysis = await self.makemkv.analyze_disc(drive.index)
        except RuntimeError as e:
            logger.error("disc_analysis_failed", disc=drive.disc_name, error=str(e))
            return False

        if not analysis.tracks:
            logger.warning("disc_has_no_titles", disc=analysis.disc_name,
                           min_length=self.settings.makemkv.min_title_length)
            return True

        identity = await self.identifier.identify(analysis.disc_name)
        if identity is None:
            logger.warning("disc_skipped_unidentified", disc=analysis.disc_name)
            return True
        logger.info("disc_identified_as", disc=analysis.disc_name, identity=self.identifier.describe(identity))

        media_type = identity.media_type
        try:
            if media_type == MediaType.SERIES:
                return await self._process_series(analysis, identity)
            elif media_type == MediaType.MOVIE:
                return await self._process_movie(analysis, identity)
            elif media_type == MediaType.UNKNOWN:
                logger.warning("disc_skipped_unknown_type", disc=analysis.disc_name, title=identity.title)
                return True
            else:
                raise ValueError(f"Unknown media type: {media_type}")
        except (RuntimeError, OSError) as e:
            logger.error("disc_rip_failed", disc=analysis.disc_name, error=str(e))
            return False

    async def _process_series(self, analysis: DiscAnalysis, identity: MediaIdentity) -> bool:
        coordinator = self.coordinator

        async with coordinator.series_lock(identity.title):
            plan = await coordinator.plan_disc(identity.title, analysis.disc_name, analysis.tracks)
            if plan is None:
                return True

            mapping = await coordinator.assign_episodes(plan)
            work_dir = self._work_dir(analysis.disc_name)
            season = plan.record.season

            for position, track in enumerate(plan.tracks):
                episodes = mapping[position]
                ripped = await self.makemkv.rip_title(analysis.disc_index, track, work_dir)

                episode_title = None
                if self.metadata is not None:
                    episode_title = await self.metadata.get_episode_title(plan.series_title, season, episodes[0])

                destination = self.namer.generate_tv_path(plan.series_title, season, episodes, episode_title)
                final_path = await self.namer.move_file(ripped, destination)
                track.output_path = str(final_path)

            await coordinator.finalize_disc(plan)

        logger.info(
            "series_disc_completed",
            series=plan.series_title,
            disc=analysis.disc_name,
            season=season,
            episodes=f"{plan.record.starting_episode}-{plan.record.last_episode}",
        )
        return True

    async def _process_movie(self, analysis: DiscAnalysis, identity: MediaIdentity) -> bool:
        feature = analysis.main_feature
        if feature is None:
            return True

        ripped = await self.makemkv.rip_title(analysis.disc_index, feature, self._work_dir(analysis.disc_name))
        destination = self.namer.generate_movie_path(identity.title, identity.year)
        final_path = await self.namer.move_file(ripped, destination)

        logger.info("movie_disc_completed", title=identity.title, year=identity.year, path=str(final_path))
        return True

    def _work_dir(self, disc_name: str) -> Path:
        return Path(self.settings.makemkv.temp_dir) / (self.namer.sanitize_filename(disc_name) or "disc")


class Ripper:
    """Polls the drives and processes one disc at a time.

    Stop requests take effect between discs, never in the middle of one.
    """

    def __init__(self, settings: Settings, makemkv: MakeMKVService, processor: DiscProcessor):
        self.settings = settings
        self.makemkv = makemkv
        self.processor = processor

        self.running = False
        self._stop_event = asyncio.Event()
        self._handled: dict[int, str] = {}  # drive index -> disc name already processed
        self._persistence_failures = 0

    async def run(self) -> None:
        """Poll until stop() is called."""
        self.running = True
        self._stop_event.clear()
        logger.info("ripper_started", poll_interval=self.settings.disc_detection.poll_interval)

        while self.running:
            await self.poll_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.disc_detection.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("ripper_stopped")

    def stop(self) -> None:
        """Request shutdown after the current disc."""
        if self.running:
            logger.info("ripper_stopping")
        self.running = False
        self._stop_event.set()

    async def poll_once(self) -> None:
        """Check every drive once and process new discs."""
        try:
            drives = await self.makemkv.list_drives()
        except RuntimeError as e:
            logger.error("drive_listing_failed", error=str(e))
            return

        ignored = {d.upper() for d in self.settings.disc_detection.ignore_drives}
        present: dict[int, str] = {}

        for drive in drives:
            if not drive.has_disc:
                continue
            present[drive.index] = drive.disc_name
            if drive.device_path.upper() in ignored or drive.drive_name.upper() in ignored:
                continue
            if self._handled.get(drive.index) == drive.disc_name:
                continue
            if self._stop_event.is_set():
                break

            try:
                done = await self.processor.process(drive)
            except StatePersistenceError as e:
                self._persistence_failures += 1
                logger.error("state_persistence_failed", disc=drive.disc_name, error=str(e),
                             consecutive_failures=self._persistence_failures)
                if self._persistence_failures >= PERSISTENCE_ESCALATION_THRESHOLD:
                    logger.error("state_storage_unavailable", path=e.path,
                                 consecutive_failures=self._persistence_failures)
                continue
            except Exception as e:
                # Disc stays unhandled and is retried on the next poll
                logger.error("disc_processing_failed", drive=drive.index, disc=drive.disc_name, error=str(e))
                continue

            self._persistence_failures = 0
            if done:
                self._handled[drive.index] = drive.disc_name

        # Forget discs that were ejected so a re-insert is processed again
        self._handled = {idx: name for idx, name in self._handled.items() if present.get(idx) == name}
