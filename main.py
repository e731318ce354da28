"""answer-sync - snapshot reconciliation

Run from a checkout with `python main.py sweep` or `python main.py check SNAPSHOT_ID`.
The installed entry point is `answer-sync`.
"""

from answer_sync.cli import main

if __name__ == "__main__":
    main()
