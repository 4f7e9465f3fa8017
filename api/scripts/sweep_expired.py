import argparse
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from sparkmatch.database import SessionLocal  # noqa: E402
from sparkmatch.services.events import publish_events  # noqa: E402
from sparkmatch.services.integrity import audit_integrity  # noqa: E402
from sparkmatch.services.ledger import expire_stale_gifts  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Expire overdue sparks and echo offers, refunding echoes")
    parser.add_argument("--audit", action="store_true", help="run the integrity audit afterwards")
    args = parser.parse_args()

    with SessionLocal() as db:
        summary = expire_stale_gifts(db)
        published = publish_events(summary["events"])
        print("Sweep completed")
        print(f"- sparks_expired: {summary['sparks_expired']}")
        print(f"- echoes_expired: {summary['echoes_expired']}")
        print(f"- events_published: {published}")

        if args.audit:
            findings = audit_integrity(db)
            bad = {k: len(v) for k, v in findings.items() if v}
            print(f"- integrity: {'ok' if not bad else bad}")
            if bad:
                sys.exit(1)


if __name__ == "__main__":
    main()
