"""Series/season/disc detection from raw disc labels."""

import re

import structlog

from boz_series.models.disc import ParsedDiscInfo

logger = structlog.get_logger()

_SEP = r"[\s_.\-]"


class DiscNameParser:
    """Reads series name, season and disc number out of disc labels.

    Labels come from the disc itself and are inconsistent, so parsing is
    best-effort and never fails.
    """

    # "Frasier_S8_D1_BD", "Show Season 2 Disc 3", "SHOW_S01D02"
    SEASON_DISC_PATTERNS = [
        rf"^(.+?){_SEP}+S(?:eason)?{_SEP}*(\d{{1,2}}){_SEP}*D(?:is[ck])?{_SEP}*(\d{{1,2}})(?!\d)",
        rf"^(.+?){_SEP}+Season{_SEP}*(\d{{1,2}}).*?Dis[ck]{_SEP}*(\d{{1,2}})(?!\d)",
    ]

    # "Show Season 2", "Show_S02"
    SEASON_PATTERNS = [
        rf"^(.+?){_SEP}+(?:Season|Series){_SEP}*(\d{{1,2}})(?!\d)",
        rf"^(.+?){_SEP}+S(\d{{1,2}})(?={_SEP}|$)",
    ]

    # "Show_D2", "Show Disc 2"
    DISC_PATTERNS = [
        rf"^(.+?){_SEP}+D(?:is[ck])?{_SEP}*(\d{{1,2}})(?={_SEP}|$)",
    ]

    # Markers stripped when reducing a label to its reusable name pattern
    MARKER_PATTERNS = [
        rf"{_SEP}+S(?:eason)?{_SEP}*\d+{_SEP}*D(?:is[ck])?{_SEP}*\d+.*$",
        rf"{_SEP}+(?:Season|Series){_SEP}*\d+.*$",
        rf"{_SEP}+S\d+(?={_SEP}|$).*$",
        rf"{_SEP}+D(?:is[ck])?{_SEP}*\d+(?={_SEP}|$).*$",
    ]

    @staticmethod
    def parse(raw_label: str) -> ParsedDiscInfo:
        """
        Parse a disc label.

        Args:
            raw_label: Disc name as reported by the drive

        Returns:
            ParsedDiscInfo; season and disc default to 1 when absent
        """
        label = (raw_label or "").strip()

        for pattern in DiscNameParser.SEASON_DISC_PATTERNS:
            match = re.search(pattern, label, re.IGNORECASE)
            if match:
                info = ParsedDiscInfo(
                    series_name=DiscNameParser.clean_name(match.group(1)),
                    season=int(match.group(2)),
                    disc_number=int(match.group(3)),
                    season_explicit=True,
                    disc_explicit=True,
                )
                logger.debug("disc_label_parsed", label=label, series=info.series_name,
                             season=info.season, disc=info.disc_number)
                return info

        for pattern in DiscNameParser.SEASON_PATTERNS:
            match = re.search(pattern, label, re.IGNORECASE)
            if match:
                info = ParsedDiscInfo(
                    series_name=DiscNameParser.clean_name(match.group(1)),
                    season=int(match.group(2)),
                    season_explicit=True,
                )
                logger.debug("disc_label_parsed_season_only", label=label, series=info.series_name,
                             season=info.season)
                return info

        for pattern in DiscNameParser.DISC_PATTERNS:
            match = re.search(pattern, label, re.IGNORECASE)
            if match:
                info = ParsedDiscInfo(
                    series_name=DiscNameParser.clean_name(match.group(1)),
                    disc_number=int(match.group(2)),
                    disc_explicit=True,
                )
                logger.debug("disc_label_parsed_disc_only", label=label, series=info.series_name,
                             disc=info.disc_number)
                return info

        logger.debug("disc_label_unparsed", label=label)
        return ParsedDiscInfo(series_name=DiscNameParser.clean_name(label))

    @staticmethod
    def clean_name(name: str) -> str:
        """Turn a label fragment into a readable series name."""
        cleaned = name.replace("_", " ").replace(".", " ")
        cleaned = re.sub(r"\s+", " ", cleaned)
        cleaned = re.sub(r"[\s\-:]+$", "", cleaned)  # Trailing separators
        return cleaned.strip()

    @staticmethod
    def name_pattern(raw_label: str) -> str:
        """
        Reduce a label to the pattern shared by all discs of a set.

        "Frasier_S8_D1_BD" and "Frasier_S8_D2_BD" both become "Frasier".
        """
        cleaned = (raw_label or "").strip()
        for pattern in DiscNameParser.MARKER_PATTERNS:
            cleaned = re.sub(pattern, "", cleaned, flags=re.IGNORECASE)
        return DiscNameParser.clean_name(cleaned) or DiscNameParser.clean_name(raw_label or "")


def parse_disc_name(raw_label: str) -> ParsedDiscInfo:
    return DiscNameParser.parse(raw_label)


def disc_name_pattern(raw_label: str) -> str:
    return DiscNameParser.name_pattern(raw_label)
