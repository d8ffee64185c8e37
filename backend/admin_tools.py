#!/usr/bin/env python3
"""
Admin tools for ExamGuard
Command-line helpers for administrative tasks
"""

import os
import sys
import argparse
import asyncio
from datetime import timedelta
from typing import Optional

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)


from sqlalchemy import select
from examguard.core.database import AsyncSessionLocal, create_db_and_tables
from examguard.core.exceptions import ProctoringError
from examguard.core.security import create_access_token
from examguard.models.user import User
from examguard.services.exam_session_service import ExamSessionService
from examguard.services.incident_service import IncidentService
from examguard.tasks.maintenance import expire_overdue
from examguard.utils.timezone import format_local_time

SEVERITY_EMOJI = {"low": "🟢", "medium": "🟡", "high": "🟠", "critical": "🔴"}


async def create_admin_user(user_id: str, email: str, full_name: str) -> bool:
    """Create a user with the admin role, or promote an existing one"""
    await create_db_and_tables()
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).filter(User.id == user_id))
        user = result.scalars().first()
        if user is not None and user.is_admin:
            print(f"❌ User {user_id} is already an admin")
            return False

        name_parts = full_name.split(" ", 1)
        if user is None:
            user = User(id=user_id, email=email)
            db.add(user)
        user.first_name = name_parts[0]
        user.last_name = name_parts[1] if len(name_parts) > 1 else None
        user.role = "admin"
        await db.commit()

    print("✅ Admin created")
    print(f"   ID: {user_id}")
    print(f"   Email: {email}")
    print(f"   Name: {full_name}")
    return True


async def issue_token(user_id: str, minutes: Optional[int]) -> Optional[str]:
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).filter(User.id == user_id))
        user = result.scalars().first()
    if user is None:
        print(f"❌ User {user_id} not found")
        return None

    expires = timedelta(minutes=minutes) if minutes else None
    token = create_access_token({"sub": user.id}, expires_delta=expires)
    print(token)
    return token


async def list_incidents(session_id: Optional[str], unresolved_only: bool) -> None:
    async with AsyncSessionLocal() as db:
        incidents = await IncidentService(db).list_incidents(session_id, unresolved_only)

    if not incidents:
        print("📋 No security incidents found")
        return

    print(f"📋 Security incidents: {len(incidents)}")
    print("=" * 80)
    for incident in incidents:
        state = f"resolved by {incident.resolved_by}" if incident.is_resolved else "open"
        print(f"[{format_local_time(incident.created_at)}] {SEVERITY_EMOJI.get(incident.severity, '')} "
              f"{incident.incident_type} ({state})")
        print(f"    ID: {incident.id}  session: {incident.session_id}")
        print(f"    📝 {incident.description}")
        if incident.incident_metadata:
            print(f"    📊 Metadata: {incident.incident_metadata}")
    print("-" * 80)


async def resolve_incident(incident_id: str, admin_id: str) -> bool:
    async with AsyncSessionLocal() as db:
        try:
            incident = await IncidentService(db).resolve_incident(incident_id, resolved_by=admin_id)
        except ProctoringError as e:
            print(f"❌ {e.message}")
            return False
    print(f"✅ Incident {incident.id} resolved by {incident.resolved_by} at {format_local_time(incident.resolved_at)}")
    return True


async def show_stats() -> None:
    async with AsyncSessionLocal() as db:
        stats = await ExamSessionService(db).get_exam_stats()

    print("📊 Exam statistics")
    print(f"  • Active students: {stats['active_students']}")
    print(f"  • Total sessions: {stats['total_sessions']}")
    print(f"  • Unresolved alerts: {stats['unresolved_alerts']}")
    print(f"  • Average progress: {stats['average_progress']}%")


async def expire_sessions() -> None:
    result = await expire_overdue(AsyncSessionLocal)
    if not result['expired_sessions']:
        print("✅ No overdue sessions")
        return
    print(f"⏰ Auto-submitted {result['total_expired']} overdue session(s):")
    for session_id in result['expired_sessions']:
        print(f"  • {session_id}")


def main():
    parser = argparse.ArgumentParser(description="Admin tools for ExamGuard")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    create_admin_parser = subparsers.add_parser('create-admin', help='Create an administrator')
    create_admin_parser.add_argument('--user-id', required=True, help='Admin user id (token subject)')
    create_admin_parser.add_argument('--email', required=True, help='Admin email')
    create_admin_parser.add_argument('--name', required=True, help='Admin full name')

    token_parser = subparsers.add_parser('issue-token', help='Issue an access token for a user')
    token_parser.add_argument('--user-id', required=True, help='User id')
    token_parser.add_argument('--minutes', type=int, help='Token lifetime in minutes')

    incidents_parser = subparsers.add_parser('list-incidents', help='List security incidents')
    incidents_parser.add_argument('--session', help='Only incidents of this exam session')
    incidents_parser.add_argument('--unresolved', action='store_true', help='Only unresolved incidents')

    resolve_parser = subparsers.add_parser('resolve-incident', help='Resolve a security incident')
    resolve_parser.add_argument('--incident-id', required=True, help='Incident id')
    resolve_parser.add_argument('--admin-id', required=True, help='Resolving admin id')

    subparsers.add_parser('stats', help='Show exam statistics')
    subparsers.add_parser('expire-sessions', help='Auto-submit sessions whose time ran out')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    print("🚀 ExamGuard - Admin Tools")
    print("=" * 50)

    if args.command == 'create-admin':
        asyncio.run(create_admin_user(args.user_id, args.email, args.name))

    elif args.command == 'issue-token':
        asyncio.run(issue_token(args.user_id, args.minutes))

    elif args.command == 'list-incidents':
        asyncio.run(list_incidents(args.session, args.unresolved))

    elif args.command == 'resolve-incident':
        asyncio.run(resolve_incident(args.incident_id, args.admin_id))

    elif args.command == 'stats':
        asyncio.run(show_stats())

    elif args.command == 'expire-sessions':
        asyncio.run(expire_sessions())


if __name__ == "__main__":
    main()
