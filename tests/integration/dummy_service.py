import os
import sys
import time


def main():
    """
    Stand-in service: touches a ready file, then works until terminated or,
    when given an exit code, exits with it straight away.
    """
    print("Dummy service starting...")
    print(f"APP_ENV: {os.environ.get('APP_ENV')}")
    sys.stdout.flush()

    if len(sys.argv) > 1:
        sys.exit(int(sys.argv[1]))

    ready_file = os.environ.get("READY_FILE")
    if ready_file:
        with open(ready_file, "w") as f:
            f.write("ready")

    i = 0
    while True:
        print(f"Working... {i}")
        sys.stdout.flush()
        i += 1
        time.sleep(0.2)


if __name__ == "__main__":
    main()
