"""Durable per-series continuity state."""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from boz_series.core.errors import StatePersistenceError
from boz_series.models.disc import (
    DiscRecord,
    DiscShapePattern,
    ParsedDiscInfo,
    ResolutionSource,
    RippedTrack,
)
from boz_series.models.media import ManualIdentification, MediaIdentity, MediaType
from boz_series.models.series import (
    DoubleEpisodeHandling,
    SeriesState,
    TrackSortingStrategy,
    normalize_title,
)
from boz_series.services.disc_parser import disc_name_pattern

logger = structlog.get_logger()

STATE_FILE_NAME = "media_state.json"


class StateContainer(BaseModel):
    """Everything stored in the state file."""

    series_states: list[SeriesState] = Field(default_factory=list)
    manual_identifications: list[ManualIdentification] = Field(default_factory=list)


def build_episode_mapping(starting_episode: int, tracks: list[RippedTrack]) -> dict[int, list[int]]:
    """Assign consecutive episodes to tracks in order, two for a double."""
    mapping: dict[int, list[int]] = {}
    episode = starting_episode
    for position, track in enumerate(tracks):
        mapping[position] = list(range(episode, episode + track.episode_span))
        episode += track.episode_span
    return mapping


class SeriesStateStore:
    """Owns the series state table and the manual identification cache.

    All states live in one JSON container. The store keeps the loaded
    states in memory keyed by normalized title; callers get the live
    objects and hand them back to save() or apply_update().
    """

    def __init__(
        self,
        state_dir: str | Path,
        default_sorting_strategy: TrackSortingStrategy = TrackSortingStrategy.BY_TRACK_ORDER,
        default_double_handling: DoubleEpisodeHandling = DoubleEpisodeHandling.ALWAYS_ASK,
    ):
        self._state_dir = Path(state_dir)
        self._state_path = self._state_dir / STATE_FILE_NAME
        self._default_sorting_strategy = default_sorting_strategy
        self._default_double_handling = default_double_handling

        self._states: Optional[dict[str, SeriesState]] = None
        self._identifications: list[ManualIdentification] = []

    @property
    def state_path(self) -> Path:
        return self._state_path

    # ------------------------------------------------------------------
    # Series state
    # ------------------------------------------------------------------

    def get_or_create(self, series_title: str) -> SeriesState:
        """
        Get the state for a series, creating and persisting it if new.

        Args:
            series_title: Series title (matched case-insensitively)

        Returns:
            The live SeriesState
        """
        existing = self.get_existing(series_title)
        if existing is not None:
            return existing

        state = self.new_state(series_title)
        self.save(state)
        logger.info("series_state_created", series=state.series_title)
        return state

    def new_state(self, series_title: str) -> SeriesState:
        """Build a state with the store defaults without persisting it.

        It is stored by the first save() or apply_update().
        """
        return SeriesState(
            series_title=series_title.strip(),
            track_sorting_strategy=self._default_sorting_strategy,
            double_episode_handling=self._default_double_handling,
        )

    def get_existing(self, series_title: str) -> Optional[SeriesState]:
        """Get the state for a series without creating it."""
        return self._load()[0].get(normalize_title(series_title))

    def all_states(self) -> list[SeriesState]:
        return sorted(self._load()[0].values(), key=lambda s: s.key)

    def delete(self, series_title: str) -> bool:
        """Forget a series entirely, including its learned patterns."""
        states, identifications = self._load()
        key = normalize_title(series_title)
        if key not in states:
            return False

        remaining = {k: v for k, v in states.items() if k != key}
        self._write(remaining, identifications)
        self._states = remaining
        logger.info("series_state_deleted", series=series_title)
        return True

    def save(self, state: SeriesState) -> None:
        """
        Persist a series state.

        Raises:
            StatePersistenceError: If the container cannot be written. The
                in-memory table is unchanged in that case.
        """
        states, identifications = self._load()
        previous_updated_at = state.updated_at
        state.updated_at = datetime.now()

        updated = dict(states)
        updated[state.key] = state
        try:
            self._write(updated, identifications)
        except StatePersistenceError:
            state.updated_at = previous_updated_at
            raise
        self._states = updated
        logger.debug("series_state_saved", series=state.series_title)

    def compute_next_disc_info(
        self,
        state: SeriesState,
        disc_name: str,
        track_count: int,
        parsed: Optional[ParsedDiscInfo] = None,
        use_auto_increment: bool = False,
        ripped_tracks: Optional[list[RippedTrack]] = None,
    ) -> DiscRecord:
        """
        Work out which season and episode run a disc represents.

        Explicit signals win over arithmetic: a known disc shape is reused
        verbatim, then an explicit season marker is honoured (flagged when
        it disagrees with the stored season), and only then does the
        series cursor (optionally advanced by disc-number delta) decide.

        Args:
            state: Series state
            disc_name: Raw disc label
            track_count: Number of tracks to be ripped
            parsed: Parsed disc label, if available
            use_auto_increment: Whether discs advance the cursor by disc number
            ripped_tracks: Tracks on the disc; doubles raise the episode count

        Returns:
            Unsaved DiscRecord describing the proposed run
        """
        tracks = ripped_tracks or []
        doubles = sum(1 for t in tracks if t.is_double)
        episode_count = track_count + doubles

        matching = [p for p in state.known_disc_patterns if p.matches(disc_name, track_count)]
        sequence_number = 1

        # 1. Identical disc seen before
        if matching and not use_auto_increment:
            pattern = max(matching, key=lambda p: p.sequence_number)
            previous = state.find_disc(disc_name)
            logger.info(
                "disc_shape_reused",
                series=state.series_title,
                disc=disc_name,
                sequence=pattern.sequence_number,
                season=pattern.assigned_season,
                starting_episode=pattern.starting_episode,
            )
            record = DiscRecord(
                disc_name=disc_name,
                season=pattern.assigned_season,
                disc_number=previous.disc_number if previous else 1,
                starting_episode=pattern.starting_episode,
                track_count=track_count,
                episode_count=pattern.episode_count,
                sequence_number=pattern.sequence_number,
                source=ResolutionSource.SHAPE_PATTERN,
            )
            if previous and previous.episode_count == pattern.episode_count:
                record.track_to_episode_mapping = dict(previous.track_to_episode_mapping)
            return record

        if matching:
            # Same label and shape again under auto-increment: a new disc of the set
            sequence_number = max(p.sequence_number for p in matching) + 1
            logger.info("disc_shape_repeated", series=state.series_title, disc=disc_name,
                        sequence=sequence_number)

        if parsed is not None and parsed.disc_explicit:
            disc_number = parsed.disc_number
        else:
            disc_number = state.next_disc_number

        # 2. Explicit season marker that disagrees with the stored season
        if parsed is not None and parsed.season_explicit and parsed.season != state.current_season:
            season = parsed.season
            season_discs = state.discs_in_season(season)
            starting_episode = max(d.last_episode for d in season_discs) + 1 if season_discs else 1
            logger.warning(
                "season_mismatch",
                series=state.series_title,
                disc=disc_name,
                stored_season=state.current_season,
                disc_season=season,
            )
            record = DiscRecord(
                disc_name=disc_name,
                season=season,
                disc_number=disc_number,
                starting_episode=starting_episode,
                track_count=track_count,
                episode_count=episode_count,
                sequence_number=sequence_number,
                source=ResolutionSource.PARSED_MARKERS,
                conflicting_season=state.current_season,
            )
        else:
            # 3. Continue from the cursor
            season = state.current_season
            starting_episode = state.next_episode
            source = (
                ResolutionSource.PARSED_MARKERS
                if parsed is not None and parsed.has_explicit_markers
                else ResolutionSource.SEQUENTIAL
            )

            if use_auto_increment:
                baseline = self._episodes_per_disc(state, season)
                if baseline:
                    delta = disc_number - state.next_disc_number
                    starting_episode = max(1, state.next_episode + delta * baseline)
                    source = ResolutionSource.AUTO_INCREMENT
                    logger.info(
                        "auto_increment_applied",
                        series=state.series_title,
                        disc_number=disc_number,
                        expected_disc=state.next_disc_number,
                        episodes_per_disc=baseline,
                        starting_episode=starting_episode,
                    )

            record = DiscRecord(
                disc_name=disc_name,
                season=season,
                disc_number=disc_number,
                starting_episode=starting_episode,
                track_count=track_count,
                episode_count=episode_count,
                sequence_number=sequence_number,
                source=source,
            )

        # 4. Doubles widen the run
        if tracks:
            record.track_to_episode_mapping = build_episode_mapping(record.starting_episode, tracks)

        logger.info(
            "disc_run_computed",
            series=state.series_title,
            disc=disc_name,
            season=record.season,
            starting_episode=record.starting_episode,
            episode_count=record.episode_count,
            source=record.source.value,
        )
        return record

    def apply_update(
        self,
        state: SeriesState,
        record: DiscRecord,
        actual_episode_count: int,
        ripped_tracks: Optional[list[RippedTrack]] = None,
        was_auto_increment: bool = False,
    ) -> None:
        """
        Record a finished disc and advance the series cursor.

        The update is built on a copy of the state and only copied back once
        the write has succeeded, so a persistence failure leaves the state as
        it was before the disc.

        Raises:
            StatePersistenceError: If the state could not be written
        """
        working = state.model_copy(deep=True)
        final = record.model_copy(deep=True)
        final.episode_count = actual_episode_count
        final.processed_date = datetime.now()
        if ripped_tracks and not final.track_to_episode_mapping:
            final.track_to_episode_mapping = build_episode_mapping(final.starting_episode, ripped_tracks)

        # History: a reprocessed disc replaces its earlier record
        replaced: Optional[DiscRecord] = None
        for i, existing in enumerate(working.processed_discs):
            if existing.is_same_disc(final):
                replaced = existing
                working.processed_discs[i] = final
                break
        if replaced is None:
            working.processed_discs.append(final)

        counts = working.season_episode_counts
        previous_count = replaced.episode_count if replaced else 0
        counts[final.season] = max(0, counts.get(final.season, 0) - previous_count) + actual_episode_count

        self._upsert_shape_pattern(working, final)

        # A confirmed move forward to a new season
        if final.season > working.current_season and final.season_confirmed:
            logger.info("season_advanced", series=working.series_title,
                        from_season=working.current_season, to_season=final.season)
            working.current_season = final.season
            working.next_episode = 1
            working.next_disc_number = 1

        if final.season == working.current_season:
            working.next_episode = max(working.next_episode, final.starting_episode + actual_episode_count)
            working.next_disc_number = max(working.next_disc_number, final.disc_number + 1)
        else:
            logger.warning(
                "disc_outside_current_season",
                series=working.series_title,
                disc=final.disc_name,
                disc_season=final.season,
                current_season=working.current_season,
            )

        if was_auto_increment:
            working.auto_increment = True
            total = working.season_episode_totals.get(working.current_season, 0)
            if total and working.next_episode > total:
                logger.info("season_completed", series=working.series_title,
                            season=working.current_season, episodes=total)
                working.current_season += 1
                working.next_episode = 1
                working.next_disc_number = 1

        self.save(working)

        for field_name in SeriesState.model_fields:
            setattr(state, field_name, getattr(working, field_name))
        self._states[state.key] = state

        logger.info(
            "series_state_updated",
            series=state.series_title,
            season=state.current_season,
            next_episode=state.next_episode,
            next_disc=state.next_disc_number,
        )

    # ------------------------------------------------------------------
    # Manual identification cache
    # ------------------------------------------------------------------

    def get_manual_identification(self, disc_name: str) -> Optional[ManualIdentification]:
        """
        Find a cached identification for a disc label.

        Series identifications match every disc sharing the label pattern;
        movie identifications only match the same pattern exactly.
        """
        _, identifications = self._load()
        pattern = disc_name_pattern(disc_name).casefold()
        label = disc_name.strip().casefold().replace("_", " ")

        for entry in identifications:
            stored = entry.disc_name_pattern.casefold()
            exact = stored == pattern
            if not exact and not label.startswith(stored):
                continue
            if entry.media_type == MediaType.MOVIE and not exact:
                logger.info("cached_movie_identification_ignored", pattern=entry.disc_name_pattern,
                            disc=disc_name)
                return None
            return entry
        return None

    def save_manual_identification(self, disc_name: str, identity: MediaIdentity) -> ManualIdentification:
        """Cache an identification under the disc's name pattern."""
        states, identifications = self._load()
        pattern = disc_name_pattern(disc_name)

        entry = ManualIdentification(
            disc_name_pattern=pattern,
            media_title=identity.title,
            external_id=identity.external_id,
            media_type=identity.media_type,
            year=identity.year,
            cached_identity=identity,
        )
        updated = [m for m in identifications if m.disc_name_pattern.casefold() != pattern.casefold()]
        updated.append(entry)

        self._write(states, updated)
        self._identifications = updated
        logger.info("manual_identification_saved", pattern=pattern, title=identity.title)
        return entry

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _episodes_per_disc(state: SeriesState, season: int) -> int:
        """Episodes on the most recent disc of a season, 0 if none."""
        season_discs = state.discs_in_season(season)
        if not season_discs:
            return 0
        return season_discs[-1].episode_count

    @staticmethod
    def _upsert_shape_pattern(state: SeriesState, record: DiscRecord) -> None:
        for pattern in state.known_disc_patterns:
            if pattern.matches(record.disc_name, record.track_count) and pattern.sequence_number == record.sequence_number:
                pattern.assigned_season = record.season
                pattern.starting_episode = record.starting_episode
                pattern.episode_count = record.episode_count
                pattern.processed_date = datetime.now()
                return

        state.known_disc_patterns.append(
            DiscShapePattern(
                disc_title=record.disc_name.strip(),
                track_count=record.track_count,
                sequence_number=record.sequence_number,
                assigned_season=record.season,
                starting_episode=record.starting_episode,
                episode_count=record.episode_count,
            )
        )
        logger.info(
            "disc_shape_recorded",
            series=state.series_title,
            disc=record.disc_name,
            tracks=record.track_count,
            sequence=record.sequence_number,
            episodes=f"{record.starting_episode}-{record.starting_episode + record.episode_count - 1}",
        )

    def _load(self) -> tuple[dict[str, SeriesState], list[ManualIdentification]]:
        if self._states is not None:
            return self._states, self._identifications

        self._states = {}
        self._identifications = []

        if not self._state_path.exists():
            logger.info("state_file_missing", path=str(self._state_path))
            return self._states, self._identifications

        try:
            raw = json.loads(self._state_path.read_text(encoding="utf-8"))
            if isinstance(raw, list):
                # Older files held a bare list of series states
                container = StateContainer(series_states=raw)
                logger.info("state_file_upgraded", path=str(self._state_path))
            else:
                container = StateContainer.model_validate(raw)
        except (OSError, ValueError, ValidationError) as e:
            self._quarantine(e)
            return self._states, self._identifications

        for state in container.series_states:
            if state.series_title.strip():
                self._states[state.key] = state
        self._identifications = list(container.manual_identifications)

        logger.info(
            "state_loaded",
            path=str(self._state_path),
            series=len(self._states),
            identifications=len(self._identifications),
        )
        return self._states, self._identifications

    def _quarantine(self, error: Exception) -> None:
        """Move an unreadable state file aside so it is not overwritten."""
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        target = self._state_path.with_name(f"{self._state_path.name}.corrupt-{stamp}")
        try:
            os.replace(self._state_path, target)
        except OSError as e:
            raise StatePersistenceError(str(self._state_path), f"unreadable and cannot be moved aside: {e}") from e
        logger.error("state_file_corrupt", path=str(self._state_path), moved_to=str(target), error=str(error))

    def _write(self, states: dict[str, SeriesState], identifications: list[ManualIdentification]) -> None:
        """Write the container atomically (temp file, fsync, replace)."""
        container = StateContainer(
            series_states=sorted(states.values(), key=lambda s: s.key),
            manual_identifications=identifications,
        )
        payload = container.model_dump_json(indent=2)

        tmp_path: Optional[str] = None
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".media_state.", suffix=".tmp", dir=self._state_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._state_path)
            tmp_path = None
        except OSError as e:
            logger.error("state_write_failed", path=str(self._state_path), error=str(e))
            raise StatePersistenceError(str(self._state_path), str(e)) from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
