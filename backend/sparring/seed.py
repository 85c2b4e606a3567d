from __future__ import annotations

import argparse

from . import models
from .database import Base, SessionLocal, engine

DEMO_MATCHES = [
    {
        "competition_id": "demo-cup",
        "weight_class_id": "U68",
        "field_id": "F1",
        "stage": "Quarterfinal",
        "red": ("Arif Rahman", "Jakarta Selatan", "R-101"),
        "blue": ("Budi Santoso", "Bandung", "B-207"),
    },
    {
        "competition_id": "demo-cup",
        "weight_class_id": "U58",
        "field_id": "F2",
        "stage": "Quarterfinal",
        "red": ("Citra Lestari", "Surabaya", "R-115"),
        "blue": ("Dewi Anggraini", "Medan", "B-219"),
    },
]

ASSESSOR_IDS = ["assessor-1", "assessor-2", "assessor-3", "assessor-4", "assessor-5"]
JUDGE_ID = "judge-1"


def reset_database() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def seed(reset: bool = False) -> list[int]:
    if reset:
        reset_database()
    else:
        Base.metadata.create_all(bind=engine)

    created: list[int] = []
    with SessionLocal() as db:
        for data in DEMO_MATCHES:
            red_name, red_unit, red_bib = data["red"]
            blue_name, blue_unit, blue_bib = data["blue"]
            match = models.Match(
                competition_id=data["competition_id"],
                weight_class_id=data["weight_class_id"],
                field_id=data["field_id"],
                stage=data["stage"],
                red_name=red_name,
                red_unit=red_unit,
                red_bib=red_bib,
                blue_name=blue_name,
                blue_unit=blue_unit,
                blue_bib=blue_bib,
                total_rounds=3,
                round_duration_seconds=120,
                tie_breaker_duration_seconds=60,
                allow_extra_round=True,
                max_extra_rounds=1,
                tie_break_rule="DECISION",
            )
            db.add(match)
            db.flush()

            for position, user_id in enumerate(ASSESSOR_IDS, start=1):
                db.add(
                    models.AssessorAssignmentRecord(
                        match_id=match.id,
                        user_id=user_id,
                        position=position,
                        role="ASSESSOR",
                    )
                )
            db.add(
                models.AssessorAssignmentRecord(
                    match_id=match.id,
                    user_id=JUDGE_ID,
                    position=len(ASSESSOR_IDS) + 1,
                    role="JUDGE",
                )
            )
            created.append(match.id)

        db.commit()

    return created


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo sparring matches.")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop and recreate all tables before seeding.",
    )
    args = parser.parse_args()

    match_ids = seed(reset=args.reset)
    print(f"Seed completed ({len(match_ids)} matches: {', '.join(str(item) for item in match_ids)})")
