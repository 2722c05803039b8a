import argparse
import time

from loyalty_engine import InMemoryRecordStore, configure_logging
from loyalty_engine.batch import BatchReplay
from loyalty_engine.config import get_config
from loyalty_engine.exceptions import LoyaltyEngineError
from loyalty_engine.loader import RecordLoader


def main():
    arg_parser = argparse.ArgumentParser(description="Replay loyalty record events against CSV reference data")
    arg_parser.add_argument("--data", default="data", help="Directory with one CSV per record type")
    arg_parser.add_argument("--events", default="input/events.csv", help="CSV of record_type,record_id events")
    arg_parser.add_argument("--output", default="output/results.csv", help="Results CSV path")
    args = arg_parser.parse_args()

    config = get_config()
    configure_logging(config)

    start_time = time.time()
    store = InMemoryRecordStore(default_timeout=config.store_timeout)

    print(f"Loading reference data from {args.data}...")
    try:
        counts = RecordLoader(args.data).load_into(store)
    except LoyaltyEngineError as e:
        print(f"Error loading reference data: {e}")
        return
    print(f"Loaded {sum(counts.values())} records.")

    print(f"Replaying events from {args.events}...")
    try:
        summary = BatchReplay(store, config).process_csv_file(args.events, args.output)
    except (OSError, ValueError) as e:
        print(f"Error during replay: {e}")
        return

    print(f"Processed {summary['processed']}, skipped {summary['skipped']}, rejected {summary['rejected']}.")
    print(f"Results saved to {summary['output_file']}")
    print(f"Total execution time: {time.time() - start_time:.2f} seconds.")


if __name__ == "__main__":
    main()
