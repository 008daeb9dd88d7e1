"""
Emoji driven synchronization between two Productboard custom fields.

The trigger field holds labels prefixed with emoji (e.g. "📚 LMS"). Each emoji
found there maps to a category label, and the resulting set of labels is
mirrored onto the target field.
"""

import logging
import unicodedata
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple

import regex

from productboard import ProductboardAPIError, ProductboardClient, ProductboardError

logger = logging.getLogger(__name__)

VARIATION_SELECTOR_16 = '\ufe0f'

EMOJI_PATTERN = regex.compile(r'\p{Extended_Pictographic}')

EMOJI_LABELS = {
    '📚': 'LMS',
    '🏢': 'Enterprise Enablement',
    '📜': 'Certification',
    '⚙️': 'Platform Administration',
    '🌐': 'Community',
    '🙋': 'End User',
}


def normalize_emoji(emoji: str) -> str:
    """NFC-compose and drop variation selectors so equivalent encodings compare equal"""
    return unicodedata.normalize('NFC', emoji).replace(VARIATION_SELECTOR_16, '')


def build_emoji_map(labels: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType({normalize_emoji(emoji): label for emoji, label in labels.items()})


NORMALIZED_EMOJI_MAP = build_emoji_map(EMOJI_LABELS)


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


def extract_emojis(labels: Iterable[str]) -> List[str]:
    """Return the distinct normalized emoji found across all labels, in order of appearance"""
    found = []
    for label in labels:
        found.extend(EMOJI_PATTERN.findall(label))
    return _unique(normalize_emoji(emoji) for emoji in found)


def map_emojis(
    emojis: Iterable[str], emoji_map: Mapping[str, str] = NORMALIZED_EMOJI_MAP
) -> Tuple[List[str], List[str]]:
    """Map normalized emoji to labels; returns (labels, unmapped emoji)"""
    labels = []
    unmapped = []
    for emoji in emojis:
        key = normalize_emoji(emoji)
        if key in emoji_map:
            labels.append(emoji_map[key])
        else:
            unmapped.append(key)
    return _unique(labels), unmapped


def labels_match(current: Iterable[str], desired: Iterable[str]) -> bool:
    return set(current) == set(desired)


@dataclass(frozen=True)
class SyncResult:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    updated: bool = False
    cleared: bool = False
    added: bool = False
    current_labels: List[str] = field(default_factory=list)
    desired_labels: List[str] = field(default_factory=list)


class FieldSynchronizer:
    """Mirrors the emoji categories of a trigger field onto a target field"""

    def __init__(
        self,
        client: ProductboardClient,
        trigger_field_id: str,
        target_field_id: str,
        emoji_map: Mapping[str, str] = NORMALIZED_EMOJI_MAP,
    ):
        self.client = client
        self.trigger_field_id = trigger_field_id
        self.target_field_id = target_field_id
        self.emoji_map = emoji_map

    def desired_labels(self, entity_id: str) -> List[str]:
        trigger_labels = self.client.get_field_labels(self.trigger_field_id, entity_id)
        emojis = extract_emojis(trigger_labels)
        logger.info(f"Trigger labels: {trigger_labels}, emojis: {emojis}")

        labels, unmapped = map_emojis(emojis, self.emoji_map)
        if unmapped:
            logger.warning(f"Unmapped emojis ignored: {unmapped}")
        return labels

    def reconcile(self, entity_id: str) -> SyncResult:
        """Bring the target field in line with the trigger field for one entity"""
        logger.info(f"Processing webhook for entity: {entity_id}")
        try:
            desired = self.desired_labels(entity_id)
            current = self.client.get_field_labels(self.target_field_id, entity_id)

            logger.info(f"Current target labels: {current}")
            logger.info(f"Desired target labels: {desired}")

            if labels_match(current, desired):
                logger.info("Target already correct - no update needed")
                return SyncResult(
                    success=True,
                    message='No change',
                    current_labels=current,
                    desired_labels=desired,
                )

            # The multi-select value can only be replaced as a whole
            self.client.clear_field_value(self.target_field_id, entity_id)
            if desired:
                self.client.set_field_labels(self.target_field_id, entity_id, desired)
                logger.info("Target values set")
            else:
                logger.info("Target cleared (no emoji match)")

            return SyncResult(
                success=True,
                message='Target set' if desired else 'Target cleared',
                updated=True,
                cleared=bool(current) and not desired,
                added=bool(desired),
                current_labels=current,
                desired_labels=desired,
            )

        except ProductboardAPIError as e:
            logger.error(f"Field sync failed for entity {entity_id}: {e.details()}")
            return SyncResult(success=False, error=str(e))
        except ProductboardError as e:
            logger.error(f"Field sync failed for entity {entity_id}: {e}")
            return SyncResult(success=False, error=str(e))
