"""Cross-disc continuity: which episodes a freshly inserted disc holds."""

import asyncio
from typing import Optional, Protocol

import structlog
from pydantic import BaseModel, Field

from boz_series.core.config import ContinuityConfig
from boz_series.models.disc import DiscRecord, ParsedDiscInfo, ResolutionSource, RippedTrack
from boz_series.models.series import (
    DoubleEpisodeHandling,
    SeriesState,
    TrackSortingStrategy,
    normalize_title,
)
from boz_series.services.confirmation import (
    ConfirmationDecision,
    Confirmer,
    DiscProposal,
)
from boz_series.services.disc_parser import disc_name_pattern, parse_disc_name
from boz_series.services.pattern_learning import PatternLearner
from boz_series.services.state_store import SeriesStateStore, build_episode_mapping

logger = structlog.get_logger()


class SeasonTotals(Protocol):
    """Anything that knows how many episodes a season has."""

    async def season_episode_total(self, series_title: str, season: int) -> Optional[int]:
        ...


class DiscPlan(BaseModel):
    """A disc being processed, from planning until its state is finalized."""

    state: SeriesState
    record: DiscRecord
    parsed: ParsedDiscInfo
    tracks: list[RippedTrack] = Field(default_factory=list)
    use_auto_increment: bool = False

    @property
    def series_title(self) -> str:
        return self.state.series_title


class ContinuityCoordinator:
    """Plans, numbers and finalizes the discs of a series.

    Callers hold series_lock() for the series from plan_disc() through
    finalize_disc() so two drives never interleave updates to one series.
    """

    def __init__(
        self,
        store: SeriesStateStore,
        learner: PatternLearner,
        confirmer: Confirmer,
        metadata: Optional[SeasonTotals] = None,
        settings: Optional[ContinuityConfig] = None,
    ):
        self.store = store
        self.learner = learner
        self.confirmer = confirmer
        self.metadata = metadata
        self.settings = settings or ContinuityConfig()
        self._locks: dict[str, asyncio.Lock] = {}

    def series_lock(self, series_title: str) -> asyncio.Lock:
        """Get the mutation lock for a series."""
        key = normalize_title(series_title)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def plan_disc(
        self,
        series_title: str,
        disc_name: str,
        tracks: list[RippedTrack],
    ) -> Optional[DiscPlan]:
        """
        Propose the season and episode run for a disc.

        Season mismatches, brand-new series without label markers and (if
        configured) every disc are confirmed by the user first.

        Args:
            series_title: Identified series title
            disc_name: Raw disc label
            tracks: Titles that will be ripped

        Returns:
            DiscPlan, or None if the user chose to skip the disc
        """
        parsed = parse_disc_name(disc_name)
        existing = self.store.get_existing(series_title)
        is_new_series = existing is None
        # A new series is stored once its first disc is finalized
        state = existing if existing is not None else self.store.new_state(series_title)

        use_auto_increment = await self._resolve_auto_increment(state, disc_name)
        await self._refresh_season_total(state)

        record = self.store.compute_next_disc_info(
            state,
            disc_name,
            len(tracks),
            parsed=parsed,
            use_auto_increment=use_auto_increment,
            ripped_tracks=tracks,
        )

        needs_confirmation = (
            record.has_season_mismatch
            or (is_new_series and not parsed.has_explicit_markers)
            or self.settings.confirm_every_disc
        )
        if needs_confirmation:
            confirmed = await self._confirm(state, record, is_new_series)
            if not confirmed:
                return None

        logger.info(
            "disc_planned",
            series=state.series_title,
            disc=disc_name,
            season=record.season,
            starting_episode=record.starting_episode,
            episode_count=record.episode_count,
            source=record.source.value,
            auto_increment=use_auto_increment,
        )
        return DiscPlan(
            state=state,
            record=record,
            parsed=parsed,
            tracks=list(tracks),
            use_auto_increment=use_auto_increment,
        )

    async def assign_episodes(self, plan: DiscPlan) -> dict[int, list[int]]:
        """
        Decide the episode(s) of every track of a planned disc.

        Orders the tracks by the series sorting strategy, settles double
        length tracks and, for user-confirmed series, asks for each track
        with learned suggestions. The plan's tracks are replaced by the
        ordered list; mapping keys are positions in that list.

        Returns:
            Track position -> episode numbers
        """
        state = plan.state
        record = plan.record
        ordered = self._order_tracks(state.track_sorting_strategy, plan.tracks)
        plan.tracks = ordered

        if record.source == ResolutionSource.SHAPE_PATTERN:
            recorded = record.track_to_episode_mapping
            if recorded and set(recorded) == set(range(len(ordered))):
                for position, track in enumerate(ordered):
                    track.is_double = len(recorded[position]) > 1
                logger.info("disc_mapping_reused", series=state.series_title, disc=record.disc_name)
                return dict(recorded)

        await self._mark_doubles(state, ordered)

        strategy = state.track_sorting_strategy
        if strategy == TrackSortingStrategy.BY_TRACK_ORDER or strategy == TrackSortingStrategy.BY_SOURCE_FILE:
            mapping = build_episode_mapping(record.starting_episode, ordered)
        elif strategy == TrackSortingStrategy.USER_CONFIRMED:
            mapping = await self._confirm_each_track(plan, ordered)
        else:
            raise ValueError(f"Unknown track sorting strategy: {strategy}")

        record.track_to_episode_mapping = mapping
        if mapping:
            record.starting_episode = min(min(episodes) for episodes in mapping.values())
        counted = sum(len(episodes) for episodes in mapping.values())
        if record.source == ResolutionSource.USER_OVERRIDE and counted != record.episode_count:
            logger.warning(
                "override_episode_count_replaced",
                series=state.series_title,
                disc=record.disc_name,
                requested=record.episode_count,
                counted=counted,
            )
        record.episode_count = counted

        logger.info(
            "episodes_assigned",
            series=state.series_title,
            disc=record.disc_name,
            strategy=strategy.value,
            starting_episode=record.starting_episode,
            episode_count=record.episode_count,
            doubles=sum(1 for t in ordered if t.is_double),
        )
        return mapping

    async def finalize_disc(self, plan: DiscPlan) -> None:
        """
        Record a ripped disc in the series state, then learn from its selections.

        Raises:
            StatePersistenceError: If the state could not be written
        """
        state = plan.state
        record = plan.record
        actual = record.episode_count

        self.store.apply_update(
            state,
            record,
            actual,
            ripped_tracks=plan.tracks,
            was_auto_increment=plan.use_auto_increment,
        )

        if state.track_sorting_strategy == TrackSortingStrategy.USER_CONFIRMED and record.user_selections:
            self.learner.analyze_and_update(
                state.series_title,
                record.season,
                record.disc_name,
                list(record.user_selections),
            )

    async def _resolve_auto_increment(self, state: SeriesState, disc_name: str) -> bool:
        """Use the saved preference, else ask once when the disc looks like part of a set."""
        if state.auto_increment_preference is not None:
            return state.auto_increment_preference

        pattern = disc_name_pattern(disc_name).casefold()
        seen_similar = any(
            disc_name_pattern(disc.disc_name).casefold() == pattern for disc in state.processed_discs
        )
        if not (state.auto_increment or seen_similar):
            return False

        answer = await self.confirmer.confirm_auto_increment(state.series_title, disc_name)
        state.auto_increment_preference = answer
        self.store.save(state)
        logger.info("auto_increment_preference_saved", series=state.series_title, enabled=answer)
        return answer

    async def _refresh_season_total(self, state: SeriesState) -> None:
        if self.metadata is None or state.current_season in state.season_episode_totals:
            return

        total = await self.metadata.season_episode_total(state.series_title, state.current_season)
        if total:
            state.season_episode_totals[state.current_season] = total
            logger.debug("season_total_known", series=state.series_title,
                         season=state.current_season, episodes=total)

    async def _confirm(self, state: SeriesState, record: DiscRecord, is_new_series: bool) -> bool:
        """Route a proposal through the confirmer. Returns False on skip."""
        proposal = DiscProposal(
            series_title=state.series_title,
            disc_name=record.disc_name,
            season=record.season,
            starting_episode=record.starting_episode,
            episode_count=record.episode_count,
            source=record.source,
            conflicting_season=record.conflicting_season,
            stored_next_episode=state.next_episode,
            is_new_series=is_new_series,
        )
        result = await self.confirmer.confirm_disc(proposal)
        decision = result.decision

        if decision == ConfirmationDecision.ACCEPT:
            record.season_confirmed = True
            logger.info("disc_confirmed", series=state.series_title, disc=record.disc_name,
                        season=record.season, mismatch=record.has_season_mismatch)
        elif decision == ConfirmationDecision.OVERRIDE:
            record.season = result.season if result.season is not None else record.season
            if result.starting_episode is not None:
                record.starting_episode = max(1, result.starting_episode)
            if result.episode_count is not None:
                record.episode_count = result.episode_count
            record.source = ResolutionSource.USER_OVERRIDE
            record.conflicting_season = None
            record.season_confirmed = True
            record.track_to_episode_mapping = {}
            logger.info("disc_overridden", series=state.series_title, disc=record.disc_name,
                        season=record.season, starting_episode=record.starting_episode)
        elif decision == ConfirmationDecision.SKIP:
            logger.info("disc_skipped", series=state.series_title, disc=record.disc_name)
            return False
        else:
            raise ValueError(f"Unknown confirmation decision: {decision}")
        return True

    @staticmethod
    def _order_tracks(strategy: TrackSortingStrategy, tracks: list[RippedTrack]) -> list[RippedTrack]:
        if strategy == TrackSortingStrategy.BY_TRACK_ORDER or strategy == TrackSortingStrategy.USER_CONFIRMED:
            return sorted(tracks, key=lambda t: t.index)
        elif strategy == TrackSortingStrategy.BY_SOURCE_FILE:
            # Tracks without a playlist name go last, in title order
            return sorted(tracks, key=lambda t: (t.source_file_name is None, t.source_file_name or "", t.index))
        raise ValueError(f"Unknown track sorting strategy: {strategy}")

    async def _mark_doubles(self, state: SeriesState, tracks: list[RippedTrack]) -> None:
        """Flag tracks much longer than the shortest as double episodes."""
        if len(tracks) < 2:
            return

        shortest = min(t.duration_seconds for t in tracks)
        if shortest <= 0:
            return
        threshold = shortest * self.settings.double_length_factor

        for track in tracks:
            if track.duration_seconds <= threshold:
                track.is_double = False
                continue

            handling = state.double_episode_handling
            if handling == DoubleEpisodeHandling.ALWAYS_DOUBLE:
                track.is_double = True
            elif handling == DoubleEpisodeHandling.ALWAYS_SINGLE:
                track.is_double = False
            elif handling == DoubleEpisodeHandling.ALWAYS_ASK:
                is_double, preference = await self.confirmer.confirm_double_episode(
                    state.series_title, track, shortest
                )
                track.is_double = is_double
                if preference is not None:
                    # Persisted with the disc in finalize_disc
                    state.double_episode_handling = preference
                    logger.info("double_episode_preference_set", series=state.series_title,
                                handling=preference.value)
            else:
                raise ValueError(f"Unknown double episode handling: {handling}")

            if track.is_double:
                logger.info("double_episode_track", series=state.series_title, track=track.index,
                            duration=track.duration_formatted)

    async def _confirm_each_track(self, plan: DiscPlan, tracks: list[RippedTrack]) -> dict[int, list[int]]:
        """Ask the episode of every track, offering learned suggestions."""
        state = plan.state
        record = plan.record
        record.user_selections = []

        mapping: dict[int, list[int]] = {}
        disc_start = record.starting_episode
        sequential = disc_start
        for position, track in enumerate(tracks):
            suggested, confidence = self.learner.suggest_episode(
                state.series_title, record.season, record.disc_name, position, sequential,
                disc_start=disc_start,
            )
            selected = await self.confirmer.select_episode(
                state.series_title, record.season, track, position, suggested, confidence
            )
            selected = max(1, selected)
            self.learner.record_selection(
                record,
                state.series_title,
                record.season,
                position,
                str(track.index),
                track.name,
                suggested,
                selected,
                suggestion_confidence=confidence,
                state=state,
            )
            mapping[position] = list(range(selected, selected + track.episode_span))
            sequential += track.episode_span
        return mapping
