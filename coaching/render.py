from typing import Dict, Iterable, List, Optional

from coaching.tree import TreeNode

TYPE_ICONS = {
    'todo': '',
    'video': '🎬 ',
    'exam': '📚 ',
    'nutrition': '🥗 ',
    'music': '🎸 ',
    'other': '📌 ',
}


def _labelled(nodes: Iterable[TreeNode], prefix: str = ''):
    for position, node in enumerate(nodes, start=1):
        label = f"{prefix}{position}"
        yield label, node, label.count('.')
        yield from _labelled(node.children, f"{label}.")


def label_index(nodes: Iterable[TreeNode]) -> Dict[str, str]:
    """Hierarchical label ("1", "1.2") to task id"""
    return {label: node.id for label, node, _ in _labelled(list(nodes))}


def render_line(node: TreeNode, label: str, depth: int) -> str:
    row = node.row
    box = '☑' if row.get('is_completed') else '☐'
    parts = [f"{'    ' * depth}{label}. {box} {TYPE_ICONS.get(row.get('task_type'), '')}{row.get('title', '')}"]
    if row.get('due_time'):
        parts.append(f"⏰ {row['due_time']}")
    if row.get('duration_minutes'):
        parts.append(f"{row['duration_minutes']} min")
    return ' · '.join(parts)


def render_tree(nodes: Iterable[TreeNode], title: Optional[str] = None, hints: bool = True) -> str:
    nodes = list(nodes)
    lines: List[str] = [title] if title else []
    if not nodes:
        lines.append("Nothing planned.")
        return '\n'.join(lines)
    for label, node, depth in _labelled(nodes):
        lines.append(render_line(node, label, depth))
    if hints:
        lines.append("")
        lines.append("/done <label> to complete · /undo <label> to reopen · /add <title> for a new task")
    return '\n'.join(lines)


def render_habits(grid: List[Dict], day_names=('M', 'T', 'W', 'T', 'F', 'S', 'S')) -> str:
    """Week grid, one habit per line"""
    if not grid:
        return "No habits yet."
    lines = [' '.join(day_names)]
    for position, entry in enumerate(grid, start=1):
        habit = entry['habit']
        cells = ' '.join('●' if done else '○' for done in entry['days'])
        streak = f" 🔥{habit['current_streak']}" if habit.get('current_streak') else ''
        lines.append(f"{cells}  {position}. {habit['name']}{streak}")
    return '\n'.join(lines)
