#!/usr/bin/env python3
"""
TestHub: Demo UAT Session Seed Script.

Creates one active review session for a website launch: a checklist with
steps, two reviewers, a PM collaborator, a first test run and one
rejection, so every portal state can be clicked through locally.

Usage:
    python scripts/seed_demo_session.py
    python scripts/seed_demo_session.py --base-url http://localhost:5173
"""

import argparse
import sys

sys.path.insert(0, ".")

from testhub import create_app
from testhub.models import db
from testhub.services import (
    checklist_service,
    comment_service,
    response_service,
    session_service,
    test_run_service,
)
from testhub.services.access_service import GuestActor, InternalActor, PortalLinks

CHECKLIST = {
    "version": "1.0",
    "items": [
        {
            "title": "Homepage hero",
            "item_type": "screenshot",
            "instructions": "Compare the hero section against the approved mock-up.",
            "internal_note": "Client asked twice about the hero video autoplay.",
            "steps": [
                {"title": "Open the homepage on desktop"},
                {"title": "Open the homepage on mobile"},
                {"title": "Read the brand guidelines summary", "step_type": "info"},
            ],
        },
        {
            "title": "Contact form",
            "item_type": "approval",
            "steps": [
                {"title": "Submit the form with valid data", "expected_result": "Thank-you page"},
                {"title": "Wait for the confirmation e-mail", "step_type": "delay",
                 "estimated_duration_minutes": 5},
                {"title": "Check the CRM entry", "notes_required": True,
                 "notes_prompt": "Paste the CRM record id"},
            ],
        },
        {"title": "Pricing page copy", "item_type": "text_feedback"},
    ],
}


def seed(links: PortalLinks) -> None:
    staff = InternalActor("demo-staff", "Demo Staff")

    uat_session = session_service.create_session(
        {"name": "Website launch UAT", "description": "Final client sign-off", "priority": "high"},
        created_by_id=staff.user_id,
    )
    checklist_service.import_items(uat_session, CHECKLIST)
    session_service.change_status(uat_session, "active")

    dana = session_service.add_guest(uat_session, "Dana Client", "dana@example.com")
    lee = session_service.add_guest(uat_session, "Lee Client", "lee@example.com")
    pm = session_service.add_collaborator(uat_session, "Pat PM", "pat@example.com", "pm",
                                          invited_by_id=staff.user_id)

    hero, contact, _pricing = checklist_service.list_items(uat_session)

    dana_actor = GuestActor(dana.id, dana.name)
    run = test_run_service.open_run(hero, dana_actor)
    for step in checklist_service.list_steps(hero):
        status = "acknowledged" if step.step_type == "info" else "passed"
        test_run_service.record_step_result(run, step, dana_actor, status)
    response_service.submit_response(hero, dana, "changes_requested", "Hero video should not autoplay")
    response_service.submit_response(hero, lee, "approved")
    response_service.submit_response(contact, lee, "approved")

    comment_service.create_comment(hero, staff, "Autoplay is off in the next build.")

    db.session.commit()

    print(f"Session #{uat_session.id}: {uat_session.name}")
    print(f"  Owner portal:     {links.owner(uat_session)}")
    print(f"  PM portal (Pat):  {links.collaborator(pm)}")
    print(f"  Reviewer (Dana):  {links.reviewer(dana)}")
    print(f"  Reviewer (Lee):   {links.reviewer(lee)}")


def main():
    parser = argparse.ArgumentParser(description="Seed a demo UAT session")
    parser.add_argument("--base-url", help="Override UAT_BASE_URL for the printed links")
    args = parser.parse_args()

    app = create_app()
    print(f"DB: {app.config['SQLALCHEMY_DATABASE_URI']}\n")
    with app.app_context():
        db.create_all()
        seed(PortalLinks(args.base_url or app.config["UAT_BASE_URL"]))


if __name__ == "__main__":
    main()
