"""
Pairs pilot and baseline entities by identity.

Matching only looks at (entity_type, key) within one parent scope. Attribute
values never take part, so a renamed entity shows up as one deletion and
one addition.
"""
import logging
from typing import Optional

from core.models import (
    ConfigEntity,
    ConfigurationSnapshot,
    Domain,
    DuplicateIdentity,
    EntityMatch,
    MatchResult,
)

logger = logging.getLogger(__name__)


def _index(entities: tuple[ConfigEntity, ...], scope: tuple[str, ...], label: str,
           warnings: list[DuplicateIdentity]) -> dict[tuple[str, str], ConfigEntity]:
    """Index siblings by identity, keeping the first occurrence of each."""
    index = {}
    for entity in entities:
        if entity.identity in index:
            warning = DuplicateIdentity(
                snapshot=label,
                scope=scope,
                entity_type=entity.entity_type,
                key=entity.key,
                source_file=entity.source_file,
            )
            logger.warning(warning.message)
            warnings.append(warning)
            continue
        index[entity.identity] = entity
    return index


def match_entities(pilot: tuple[ConfigEntity, ...], baseline: tuple[ConfigEntity, ...],
                   scope: tuple[str, ...] = (), warnings: Optional[list[DuplicateIdentity]] = None,
                   pilot_label: str = "pilot", baseline_label: str = "baseline") -> tuple[EntityMatch, ...]:
    """
    Match two sibling lists within one parent scope.

    Pilot order comes first, followed by baseline-only entities in baseline
    order. Children are matched recursively for pairs only.

    Args:
        pilot: Sibling entities from the pilot export
        baseline: Sibling entities from the baseline export
        scope: Keys of the enclosing entities
        warnings: Receives a DuplicateIdentity for every skipped repeat

    Returns:
        Tuple of EntityMatch
    """
    if warnings is None:
        warnings = []

    pilot_index = _index(pilot, scope, pilot_label, warnings)
    baseline_index = _index(baseline, scope, baseline_label, warnings)

    matches = []
    for identity, pilot_entity in pilot_index.items():
        baseline_entity = baseline_index.get(identity)
        children = ()
        if baseline_entity is not None:
            children = match_entities(
                pilot_entity.children,
                baseline_entity.children,
                scope + (pilot_entity.key,),
                warnings,
                pilot_label,
                baseline_label,
            )
        matches.append(EntityMatch(
            entity_type=pilot_entity.entity_type,
            key=pilot_entity.key,
            pilot=pilot_entity,
            baseline=baseline_entity,
            children=children,
            scope=scope,
        ))

    for identity, baseline_entity in baseline_index.items():
        if identity not in pilot_index:
            matches.append(EntityMatch(
                entity_type=baseline_entity.entity_type,
                key=baseline_entity.key,
                pilot=None,
                baseline=baseline_entity,
                scope=scope,
            ))

    return tuple(matches)


def match_domain(pilot: ConfigurationSnapshot, baseline: ConfigurationSnapshot, domain: Domain) -> MatchResult:
    """Match the top-level entities of one domain."""
    warnings: list[DuplicateIdentity] = []
    matches = match_entities(
        pilot.entities_for(domain),
        baseline.entities_for(domain),
        warnings=warnings,
        pilot_label=pilot.label,
        baseline_label=baseline.label,
    )
    paired = sum(1 for m in matches if m.is_paired)
    logger.info(f"{domain.title}: {len(matches)} top-level matches ({paired} paired)")
    return MatchResult(domain=domain, matches=matches, warnings=tuple(warnings))
