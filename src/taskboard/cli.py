from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .ordering.errors import MoveError
from .ordering.model import intent_from_request
from .ordering.orchestrator import MoveOrchestrator, open_orchestrator
from .server import create_app


def _configure_logging(level: str = "WARNING") -> None:
    """Route loguru and stdlib engine logs to stderr at the given level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan> - {message}"
        ),
    )
    logging.basicConfig(
        level=level.upper(),
        stream=sys.stderr,
        format="%(asctime)s | %(levelname)-8s | %(name)s - %(message)s",
    )


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _ctx(args: argparse.Namespace) -> MoveOrchestrator:
    return open_orchestrator(_resolve_project_dir(args.project_dir))


def _emit(payload: dict[str, Any]) -> int:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')
    return 0


def _status_create(args: argparse.Namespace) -> int:
    status = _ctx(args).create_status(
        args.project_id,
        args.name,
        is_completed_status=args.completed,
        order=args.order,
    )
    return _emit({'status': status.to_dict()})


def _status_list(args: argparse.Namespace) -> int:
    statuses = _ctx(args).list_statuses(args.project_id)
    return _emit({'statuses': [s.to_dict() for s in statuses]})


def _task_create(args: argparse.Namespace) -> int:
    task = _ctx(args).create_task(
        args.project_id,
        args.title,
        status_id=args.status,
        parent_id=args.parent,
        actor=args.actor,
    )
    return _emit({'task': task.to_dict()})


def _task_list(args: argparse.Namespace) -> int:
    tasks = _ctx(args).list_tasks(args.project_id, status_id=args.status, parent_id=args.parent)
    return _emit({'tasks': [t.to_dict() for t in tasks], 'total': len(tasks)})


def _task_move(args: argparse.Namespace) -> int:
    if args.parent is not None and args.top_level:
        sys.stderr.write('--parent and --top-level are mutually exclusive\n')
        return 1
    intent = intent_from_request(
        target_status_id=args.status,
        target_parent_id=args.parent,
        before_task_id=args.before,
        is_same_group_reorder=args.reorder,
        parent_specified=args.top_level or args.parent is not None,
    )
    task = _ctx(args).move(args.task_id, intent, actor=args.actor)
    return _emit({'task': task.to_dict()})


def _task_delete(args: argparse.Namespace) -> int:
    deleted = _ctx(args).delete_task(args.task_id, actor=args.actor)
    _emit({'deleted': deleted, 'task_id': args.task_id})
    return 0 if deleted else 1


def _board(args: argparse.Namespace) -> int:
    board = _ctx(args).board(args.project_id)
    columns = {sid: [t.to_dict() for t in tasks] for sid, tasks in board.columns().items()}
    return _emit({'board': board.to_dict(), 'columns': columns})


def _rebalance(args: argparse.Namespace) -> int:
    changed = _ctx(args).rebalance_group(args.project_id, args.status, args.parent, force=not args.if_needed)
    return _emit({'changed': [t.to_dict() for t in changed], 'total': len(changed)})


def _activity(args: argparse.Namespace) -> int:
    rows = _ctx(args).recent_activity(project_id=args.project_id, task_id=args.task, limit=args.limit)
    return _emit({'activity': rows})


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'taskboard[server]'\n")
        return 1

    app = create_app(project_dir=_resolve_project_dir(args.project_dir))
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Task board ordering engine CLI')
    parser.add_argument('--project-dir', default=None, help='Directory holding .taskboard/ (default: current working directory)')
    parser.add_argument('--actor', default='cli', help='Actor recorded in the activity log')
    parser.add_argument('--log-level', default='WARNING', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    subparsers = parser.add_subparsers(dest='command', required=True)

    server = subparsers.add_parser('server', help='Start the board web server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.add_argument('--reload', action='store_true')
    server.set_defaults(func=_server)

    status = subparsers.add_parser('status', help='Manage status columns')
    status_sub = status.add_subparsers(dest='status_cmd', required=True)
    screate = status_sub.add_parser('create', help='Create a status column')
    screate.add_argument('project_id')
    screate.add_argument('name')
    screate.add_argument('--completed', action='store_true', help='Tasks in this column count as completed')
    screate.add_argument('--order', default=None, type=int)
    screate.set_defaults(func=_status_create)
    slist = status_sub.add_parser('list', help='List status columns')
    slist.add_argument('project_id')
    slist.set_defaults(func=_status_list)

    task = subparsers.add_parser('task', help='Manage tasks')
    task_sub = task.add_subparsers(dest='task_cmd', required=True)
    tcreate = task_sub.add_parser('create', help='Create a task at the end of its group')
    tcreate.add_argument('project_id')
    tcreate.add_argument('title')
    tcreate.add_argument('--status', default=None)
    tcreate.add_argument('--parent', default=None)
    tcreate.set_defaults(func=_task_create)
    tlist = task_sub.add_parser('list', help='List tasks')
    tlist.add_argument('project_id')
    tlist.add_argument('--status', default=None)
    tlist.add_argument('--parent', default=None)
    tlist.set_defaults(func=_task_list)
    tmove = task_sub.add_parser('move', help='Move a task')
    tmove.add_argument('task_id')
    tmove.add_argument('--status', default=None, help='Destination status column')
    tmove.add_argument('--parent', default=None, help='New parent task')
    tmove.add_argument('--top-level', action='store_true', help='Detach from the current parent')
    tmove.add_argument('--before', default=None, help='Place before this task (default: end of group)')
    tmove.add_argument('--reorder', action='store_true', help='Reorder inside the current group')
    tmove.set_defaults(func=_task_move)
    tdelete = task_sub.add_parser('delete', help='Delete a task')
    tdelete.add_argument('task_id')
    tdelete.set_defaults(func=_task_delete)

    board = subparsers.add_parser('board', help='Show a project board')
    board.add_argument('project_id')
    board.set_defaults(func=_board)

    rebalance = subparsers.add_parser('rebalance', help='Renumber one group')
    rebalance.add_argument('project_id')
    rebalance.add_argument('--status', default=None)
    rebalance.add_argument('--parent', default=None)
    rebalance.add_argument('--if-needed', action='store_true', help='Only renumber a degraded group')
    rebalance.set_defaults(func=_rebalance)

    activity = subparsers.add_parser('activity', help='Show recent activity')
    activity.add_argument('project_id')
    activity.add_argument('--task', default=None)
    activity.add_argument('--limit', default=50, type=int)
    activity.set_defaults(func=_activity)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except MoveError as exc:
        sys.stderr.write(json.dumps(exc.to_dict()) + '\n')
        return 1


if __name__ == '__main__':
    raise SystemExit(main())
