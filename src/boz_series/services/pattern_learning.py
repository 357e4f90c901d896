"""Learning track -> episode orderings from user confirmations."""

from datetime import datetime
from typing import Optional

import structlog

from boz_series.models.disc import DiscRecord
from boz_series.models.patterns import (
    EpisodeTrackPattern,
    TrackSelectionPattern,
    TrackToEpisodeMapping,
)
from boz_series.models.series import SeriesState, TrackSortingStrategy
from boz_series.services.state_store import SeriesStateStore

logger = structlog.get_logger()

SUGGESTION_THRESHOLD = 0.7  # Below this, suggestions are not surfaced
MIN_SAMPLES = 2  # Samples needed at a position before it can be suggested
LEARNING_RATE = 0.25  # Step of the confidence moving average
INITIAL_CONFIDENCE_ACCEPTED = 0.65
INITIAL_CONFIDENCE_MANUAL = 0.4

REASON_ACCEPTED = "accepted"
REASON_MANUAL = "manual_choice"
REASON_REJECTED = "rejected_suggestion"  # A learned suggestion was overridden


class PatternLearner:
    """Learns where episodes sit on the discs of a series season.

    Active only for series using the user-confirmed sorting strategy.
    Mappings are stored relative to the lowest episode on the disc, so a
    pattern learned on disc 1 applies to disc 2 of the same set.

    Nothing here raises: on any error the learner behaves as if it had
    learned nothing.
    """

    def __init__(self, store: SeriesStateStore):
        self.store = store

    def record_selection(
        self,
        record: DiscRecord,
        series_title: str,
        season: int,
        track_position: int,
        track_id: str,
        track_name: str,
        suggested_episode: int,
        selected_episode: int,
        suggestion_confidence: float = 0.0,
        state: Optional[SeriesState] = None,
    ) -> Optional[TrackSelectionPattern]:
        """
        Remember a user's episode choice for a track of the in-flight disc.

        Args:
            suggestion_confidence: Confidence returned with the suggestion,
                0.0 when it was the plain track-order fallback
            state: State of the series being ripped, for a series not stored yet

        Returns:
            The recorded selection, or None if learning is inactive
        """
        try:
            if state is None:
                state = self.store.get_existing(series_title)
            if state is None or state.track_sorting_strategy != TrackSortingStrategy.USER_CONFIRMED:
                return None

            accepted = suggested_episode == selected_episode
            if accepted:
                reason = REASON_ACCEPTED
            elif suggestion_confidence > 0:
                reason = REASON_REJECTED
            else:
                reason = REASON_MANUAL
            selection = TrackSelectionPattern(
                track_id=track_id,
                track_name=track_name,
                track_order_position=track_position,
                suggested_episode=suggested_episode,
                selected_episode=selected_episode,
                was_accepted=accepted,
                selection_reason=reason,
            )
            record.user_selections.append(selection)

            logger.debug(
                "track_selection_recorded",
                series=series_title,
                season=season,
                position=track_position,
                suggested=suggested_episode,
                selected=selected_episode,
            )
            return selection
        except Exception as e:
            logger.warning("track_selection_record_failed", series=series_title, error=str(e))
            return None

    def suggest_episode(
        self,
        series_title: str,
        season: int,
        disc_name: str,
        track_position: int,
        fallback_episode: int,
        disc_start: Optional[int] = None,
    ) -> tuple[int, float]:
        """
        Suggest the episode for a track position.

        Args:
            fallback_episode: Episode the track would get in plain track order
            disc_start: Lowest episode on the disc. Defaults to
                fallback_episode - track_position, which only holds when no
                earlier track is a double episode.

        Returns:
            (episode, confidence); (fallback_episode, 0.0) without a usable pattern
        """
        try:
            pattern = self._pattern(series_title, season)
            if pattern is None or pattern.confidence_score < SUGGESTION_THRESHOLD:
                return fallback_episode, 0.0

            mapping = pattern.mapping_at(track_position)
            if mapping is None or mapping.sample_count < MIN_SAMPLES:
                return fallback_episode, 0.0

            if disc_start is None:
                disc_start = fallback_episode - track_position
            episode = max(1, disc_start + mapping.relative_offset)

            logger.debug(
                "episode_suggested",
                series=series_title,
                season=season,
                disc=disc_name,
                position=track_position,
                episode=episode,
                confidence=round(mapping.confidence_score, 3),
            )
            return episode, mapping.confidence_score
        except Exception as e:
            logger.warning("episode_suggestion_failed", series=series_title, error=str(e))
            return fallback_episode, 0.0

    def analyze_and_update(
        self,
        series_title: str,
        season: int,
        disc_name: str,
        selections: list[TrackSelectionPattern],
    ) -> None:
        """Fold a disc's confirmed selections into the season pattern and persist it."""
        if not selections:
            return

        try:
            state = self._active_state(series_title)
            if state is None:
                return

            previous = state.learned_patterns
            state.learned_patterns = [p.model_copy(deep=True) for p in previous]

            pattern = state.learned_pattern(season)
            if pattern is None:
                pattern = EpisodeTrackPattern(series_title=state.series_title, season=season)
                state.learned_patterns.append(pattern)

            base_episode = min(s.selected_episode for s in selections)
            for selection in selections:
                self._update_mapping(pattern, selection, selection.selected_episode - base_episode)

            pattern.confidence_score = self._aggregate(pattern)
            pattern.usage_count += 1
            pattern.last_used = datetime.now()

            try:
                self.store.save(state)
            except Exception:
                state.learned_patterns = previous
                raise

            logger.info(
                "episode_pattern_updated",
                series=series_title,
                season=season,
                disc=disc_name,
                mappings=len(pattern.track_mappings),
                confidence=round(pattern.confidence_score, 3),
            )
        except Exception as e:
            logger.warning("pattern_analysis_failed", series=series_title, season=season, error=str(e))

    def confidence(self, series_title: str, season: int, disc_name: str) -> float:
        """Aggregate confidence of the season pattern, 0.0 when none exists."""
        try:
            pattern = self._pattern(series_title, season)
            return pattern.confidence_score if pattern else 0.0
        except Exception as e:
            logger.warning("pattern_confidence_failed", series=series_title, error=str(e))
            return 0.0

    def has_patterns(self, series_title: str, season: int, disc_name: str) -> bool:
        return self.confidence(series_title, season, disc_name) >= SUGGESTION_THRESHOLD

    def _active_state(self, series_title: str) -> Optional[SeriesState]:
        state = self.store.get_existing(series_title)
        if state is None or state.track_sorting_strategy != TrackSortingStrategy.USER_CONFIRMED:
            return None
        return state

    def _pattern(self, series_title: str, season: int) -> Optional[EpisodeTrackPattern]:
        state = self._active_state(series_title)
        if state is None:
            return None
        return state.learned_pattern(season)

    @staticmethod
    def _update_mapping(pattern: EpisodeTrackPattern, selection: TrackSelectionPattern, offset: int) -> None:
        position = selection.track_order_position
        mapping = pattern.mapping_at(position)

        if mapping is None:
            initial = INITIAL_CONFIDENCE_ACCEPTED if selection.was_accepted else INITIAL_CONFIDENCE_MANUAL
            pattern.track_mappings.append(
                TrackToEpisodeMapping(
                    track_position=position,
                    episode_number=selection.selected_episode,
                    relative_offset=offset,
                    confidence_score=initial,
                )
            )
            return

        agrees = mapping.relative_offset == offset and selection.selection_reason != REASON_REJECTED
        if agrees:
            mapping.confidence_score += LEARNING_RATE * (1.0 - mapping.confidence_score)
        else:
            mapping.confidence_score -= LEARNING_RATE * mapping.confidence_score
            mapping.relative_offset = offset
        mapping.episode_number = selection.selected_episode
        mapping.confidence_score = min(1.0, max(0.0, mapping.confidence_score))
        mapping.sample_count += 1

    @staticmethod
    def _aggregate(pattern: EpisodeTrackPattern) -> float:
        if not pattern.track_mappings:
            return 0.0
        return sum(m.confidence_score for m in pattern.track_mappings) / len(pattern.track_mappings)
