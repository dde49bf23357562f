"""
Org chart tree layout for teams.

Each subtree is as wide as its children laid side by side (or one node when
that is wider); parents are centred over their children and every level sits
``NODE_HEIGHT + V_GAP`` below the previous one. Roots are centred on x = 0.
"""

from typing import Iterable, Optional

NODE_WIDTH = 220
NODE_HEIGHT = 120
H_GAP = 50
V_GAP = 100


def needs_auto_layout(teams) -> bool:
    """True when no team has a stored position yet."""
    return all(not (t.position_x or t.position_y) for t in teams)


def _row_width(widths: Iterable[int]) -> int:
    widths = list(widths)
    return sum(widths) + max(0, len(widths) - 1) * H_GAP


def layout_teams(teams) -> dict[str, tuple[int, int]]:
    """
    Compute ``{team_id: (x, y)}`` for a list of teams.

    Teams need ``id``, ``name``, ``parent_team_id`` and ``sort_order``.
    A team whose parent is not in the list is treated as a root.
    """
    if not teams:
        return {}

    ids = {t.id for t in teams}
    children: dict[Optional[str], list] = {}
    for team in teams:
        parent = team.parent_team_id if team.parent_team_id in ids else None
        children.setdefault(parent, []).append(team)
    for group in children.values():
        group.sort(key=lambda t: (t.sort_order or 0, t.name))

    widths: dict[str, int] = {}

    def subtree_width(team, seen: frozenset) -> int:
        if team.id in widths:
            return widths[team.id]
        kids = [c for c in children.get(team.id, []) if c.id not in seen]
        if not kids:
            width = NODE_WIDTH
        else:
            width = max(NODE_WIDTH, _row_width(subtree_width(c, seen | {c.id}) for c in kids))
        widths[team.id] = width
        return width

    positions: dict[str, tuple[int, int]] = {}

    def place(team, center_x: float, depth: int) -> None:
        positions[team.id] = (int(center_x), depth * (NODE_HEIGHT + V_GAP))
        kids = [c for c in children.get(team.id, []) if c.id not in positions]
        if not kids:
            return
        x = center_x - _row_width(widths.get(c.id, NODE_WIDTH) for c in kids) / 2
        for child in kids:
            width = widths.get(child.id, NODE_WIDTH)
            place(child, x + width / 2, depth + 1)
            x += width + H_GAP

    def place_row(roots) -> None:
        for root in roots:
            subtree_width(root, frozenset({root.id}))
        x = -_row_width(widths[r.id] for r in roots) / 2
        for root in roots:
            place(root, x + widths[root.id] / 2, 0)
            x += widths[root.id] + H_GAP

    roots = list(children.get(None, []))
    reachable: set[str] = set()

    def mark(team) -> None:
        stack = [team]
        while stack:
            current = stack.pop()
            if current.id in reachable:
                continue
            reachable.add(current.id)
            stack.extend(children.get(current.id, []))

    for root in roots:
        mark(root)
    # Teams caught in a parent cycle are unreachable from any root
    for team in sorted(teams, key=lambda t: (t.sort_order or 0, t.name)):
        if team.id not in reachable:
            roots.append(team)
            mark(team)

    place_row(roots)
    return positions
