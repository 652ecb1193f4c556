"""Ordering helpers for externally supplied skill atoms."""

from __future__ import annotations

import heapq
import logging
from collections import defaultdict
from typing import Dict, List, Sequence, Set, Tuple

from .quest_models import SkillAtom

logger = logging.getLogger(__name__)

LEVEL_RANK: Dict[str, int] = {"intro": 0, "basic": 1, "intermediate": 2, "advanced": 3}


def unresolved_prerequisites(atoms: Sequence[SkillAtom]) -> Dict[str, List[str]]:
    """Map atom id to prerequisite ids that no atom in ``atoms`` provides."""
    known = {atom.id for atom in atoms}
    missing: Dict[str, List[str]] = {}
    for atom in atoms:
        gaps = [prereq for prereq in atom.prereq if prereq not in known]
        if gaps:
            missing[atom.id] = gaps
    return missing


def order_skill_atoms(atoms: Sequence[SkillAtom]) -> List[SkillAtom]:
    """Topologically order atoms so prerequisites come first.

    Ties are broken by level (intro first) and then by id. Prerequisites that
    are not part of ``atoms`` are ignored. When the prerequisite graph has a
    cycle the atoms are returned in their original order.
    """
    atom_map: Dict[str, SkillAtom] = {}
    for atom in atoms:
        atom_map.setdefault(atom.id, atom)

    graph: Dict[str, Set[str]] = defaultdict(set)
    indegree: Dict[str, int] = {atom_id: 0 for atom_id in atom_map}
    for atom in atom_map.values():
        for prereq in set(atom.prereq):
            if prereq not in atom_map or prereq == atom.id:
                continue
            if atom.id not in graph[prereq]:
                graph[prereq].add(atom.id)
                indegree[atom.id] += 1

    available: List[Tuple[int, str]] = []
    for atom_id, degree in indegree.items():
        if degree == 0:
            heapq.heappush(available, (LEVEL_RANK.get(atom_map[atom_id].level, 1), atom_id))

    ordered_ids: List[str] = []
    while available:
        _, atom_id = heapq.heappop(available)
        ordered_ids.append(atom_id)
        for dependent in graph[atom_id]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(available, (LEVEL_RANK.get(atom_map[dependent].level, 1), dependent))

    if len(ordered_ids) != len(atom_map):
        cyclic = sorted(atom_id for atom_id, degree in indegree.items() if degree > 0)
        logger.warning("Skill graph has a prerequisite cycle involving %s; keeping input order.", ", ".join(cyclic))
        return list(atom_map.values())

    return [atom_map[atom_id] for atom_id in ordered_ids]


__all__ = ["order_skill_atoms", "unresolved_prerequisites"]
