"""Human-in-the-loop confirmation of disc numbering and identity."""

import asyncio
from enum import Enum
from typing import Optional, Protocol

import structlog
from pydantic import BaseModel
from rich.console import Console
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from boz_series.models.disc import ResolutionSource, RippedTrack
from boz_series.models.media import MediaIdentity, MediaType
from boz_series.models.series import DoubleEpisodeHandling

logger = structlog.get_logger()


class ConfirmationDecision(str, Enum):
    """Outcome of a disc confirmation."""

    ACCEPT = "accept"
    OVERRIDE = "override"
    SKIP = "skip"


class DiscProposal(BaseModel):
    """Proposed numbering for a disc, shown to the user."""

    series_title: str
    disc_name: str
    season: int
    starting_episode: int
    episode_count: int
    source: ResolutionSource = ResolutionSource.SEQUENTIAL
    conflicting_season: Optional[int] = None  # Stored season when the label disagrees
    stored_next_episode: Optional[int] = None
    is_new_series: bool = False

    @property
    def has_season_mismatch(self) -> bool:
        return self.conflicting_season is not None

    @property
    def episode_range(self) -> str:
        last = self.starting_episode + max(self.episode_count, 1) - 1
        return f"S{self.season:02d}E{self.starting_episode:02d}-E{last:02d}"


class ConfirmationResult(BaseModel):
    """User answer to a DiscProposal. Override carries the full triple."""

    decision: ConfirmationDecision
    season: Optional[int] = None
    starting_episode: Optional[int] = None
    episode_count: Optional[int] = None

    @classmethod
    def accept(cls) -> "ConfirmationResult":
        return cls(decision=ConfirmationDecision.ACCEPT)

    @classmethod
    def skip(cls) -> "ConfirmationResult":
        return cls(decision=ConfirmationDecision.SKIP)

    @classmethod
    def override(cls, season: int, starting_episode: int, episode_count: int) -> "ConfirmationResult":
        return cls(
            decision=ConfirmationDecision.OVERRIDE,
            season=season,
            starting_episode=starting_episode,
            episode_count=episode_count,
        )


class Confirmer(Protocol):
    """Blocking questions the continuity engine asks a human."""

    async def confirm_disc(self, proposal: DiscProposal) -> ConfirmationResult:
        ...

    async def confirm_auto_increment(self, series_title: str, disc_name: str) -> bool:
        ...

    async def confirm_double_episode(
        self, series_title: str, track: RippedTrack, shortest_seconds: int
    ) -> tuple[bool, Optional[DoubleEpisodeHandling]]:
        """Returns (is_double, preference to remember or None)."""
        ...

    async def select_episode(
        self,
        series_title: str,
        season: int,
        track: RippedTrack,
        position: int,
        suggested_episode: int,
        confidence: float,
    ) -> int:
        ...

    async def identify_media(self, disc_name: str, search_title: str) -> Optional[MediaIdentity]:
        ...


class ConsoleConfirmer:
    """Asks questions on the terminal with rich prompts.

    Prompts block, so each one runs in a worker thread to keep the event
    loop responsive.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    async def confirm_disc(self, proposal: DiscProposal) -> ConfirmationResult:
        return await asyncio.to_thread(self._confirm_disc, proposal)

    async def confirm_auto_increment(self, series_title: str, disc_name: str) -> bool:
        return await asyncio.to_thread(
            Confirm.ask,
            f"[bold]{series_title}[/bold]: '{disc_name}' looks like another disc of a set. "
            "Number following discs automatically by disc number?",
            console=self.console,
            default=True,
        )

    async def confirm_double_episode(
        self, series_title: str, track: RippedTrack, shortest_seconds: int
    ) -> tuple[bool, Optional[DoubleEpisodeHandling]]:
        return await asyncio.to_thread(self._confirm_double, series_title, track, shortest_seconds)

    async def select_episode(
        self,
        series_title: str,
        season: int,
        track: RippedTrack,
        position: int,
        suggested_episode: int,
        confidence: float,
    ) -> int:
        hint = f" (learned, {confidence:.0%} confident)" if confidence > 0 else ""
        prompt = (
            f"{series_title} S{season:02d} - track {position + 1} "
            f"'{track.name}' [{track.duration_formatted}]{hint}. Episode"
        )
        return await asyncio.to_thread(
            IntPrompt.ask, prompt, console=self.console, default=suggested_episode
        )

    async def identify_media(self, disc_name: str, search_title: str) -> Optional[MediaIdentity]:
        return await asyncio.to_thread(self._identify_media, disc_name, search_title)

    def _confirm_disc(self, proposal: DiscProposal) -> ConfirmationResult:
        table = Table(title=f"{proposal.series_title} - {proposal.disc_name}")
        table.add_column("Field")
        table.add_column("Proposed")
        table.add_row("Season", str(proposal.season))
        table.add_row("Episodes", proposal.episode_range)
        table.add_row("Count", str(proposal.episode_count))
        table.add_row("Based on", proposal.source.value)
        self.console.print(table)

        if proposal.has_season_mismatch:
            self.console.print(
                f"[yellow][!][/yellow] Disc label says season {proposal.season}, "
                f"but this series is on season {proposal.conflicting_season}."
            )
            choice = Prompt.ask(
                "Switch to label season (s), keep stored season (k), edit (e) or skip disc (x)",
                console=self.console,
                choices=["s", "k", "e", "x"],
                default="s",
            )
            if choice == "s":
                return ConfirmationResult.accept()
            if choice == "k":
                return ConfirmationResult.override(
                    proposal.conflicting_season,
                    proposal.stored_next_episode or 1,
                    proposal.episode_count,
                )
            if choice == "x":
                return ConfirmationResult.skip()
            return self._edit(proposal)

        if proposal.is_new_series:
            self.console.print("[cyan]New series, no season/disc markers on the label.[/cyan]")

        choice = Prompt.ask(
            "Accept (a), edit (e) or skip disc (x)",
            console=self.console,
            choices=["a", "e", "x"],
            default="a",
        )
        if choice == "a":
            return ConfirmationResult.accept()
        if choice == "x":
            return ConfirmationResult.skip()
        return self._edit(proposal)

    def _edit(self, proposal: DiscProposal) -> ConfirmationResult:
        season = IntPrompt.ask("Season", console=self.console, default=proposal.season)
        start = IntPrompt.ask("Starting episode", console=self.console, default=proposal.starting_episode)
        count = IntPrompt.ask("Episode count", console=self.console, default=proposal.episode_count)
        return ConfirmationResult.override(season, max(1, start), max(0, count))

    def _confirm_double(
        self, series_title: str, track: RippedTrack, shortest_seconds: int
    ) -> tuple[bool, Optional[DoubleEpisodeHandling]]:
        shortest_minutes = shortest_seconds // 60
        self.console.print(
            f"[yellow][!][/yellow] {series_title}: track '{track.name}' runs "
            f"{track.duration_formatted}, the shortest episode is ~{shortest_minutes} min."
        )
        is_double = Confirm.ask("Treat it as two episodes?", console=self.console, default=True)
        remember = Confirm.ask("Remember this answer for the series?", console=self.console, default=False)
        if not remember:
            return is_double, None
        preference = DoubleEpisodeHandling.ALWAYS_DOUBLE if is_double else DoubleEpisodeHandling.ALWAYS_SINGLE
        return is_double, preference

    def _identify_media(self, disc_name: str, search_title: str) -> Optional[MediaIdentity]:
        self.console.print(f"[yellow][!][/yellow] Could not identify disc '{disc_name}' (searched '{search_title}').")
        title = Prompt.ask("Title (empty to skip)", console=self.console, default="")
        if not title.strip():
            return None

        kind = Prompt.ask("Type", console=self.console, choices=["series", "movie"], default="series")
        year_text = Prompt.ask("Year (optional)", console=self.console, default="")
        year = int(year_text) if year_text.strip().isdigit() else None

        logger.info("media_identified_manually", disc=disc_name, title=title, media_type=kind)
        return MediaIdentity(
            title=title.strip(),
            year=year,
            media_type=MediaType.SERIES if kind == "series" else MediaType.MOVIE,
            confidence=1.0,
        )
