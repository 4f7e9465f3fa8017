import argparse
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from sparkmatch import models  # noqa: E402,F401
from sparkmatch.database import Base, SessionLocal, engine  # noqa: E402
from sparkmatch.services.seeding import seed_demo_data  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo Spark Match actors")
    parser.add_argument("--n-actors", type=int, default=60)
    parser.add_argument("--reset", action="store_true")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--spark-allowance", type=int, default=5)
    parser.add_argument("--echo-allowance", type=int, default=2)
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        summary = seed_demo_data(
            db=db,
            n_actors=args.n_actors,
            reset=args.reset,
            seed=args.seed,
            spark_allowance=args.spark_allowance,
            echo_allowance=args.echo_allowance,
        )

    print("Seed completed")
    for k, v in summary.items():
        print(f"- {k}: {v}")


if __name__ == "__main__":
    main()
