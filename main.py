"""deepresearch - iterative web research

Simple CLI for running research queries.
"""

import argparse
import asyncio

from deepresearch.agents.orchestrator import ResearchOrchestrator
from deepresearch.models.schemas import ResearchRequest
from deepresearch.tools.web_utils import extract_domain


async def run_research(query: str, max_depth: int | None = None, time_limit: float | None = None):
    """Run research on the given query."""
    print(f"Research query: {query}")
    print("-" * 50)

    orchestrator = ResearchOrchestrator()
    request = ResearchRequest(query=query, max_depth=max_depth, time_limit=time_limit)

    async for event in orchestrator.research(request):
        event_type = event.event.value
        data = event.data

        if event_type == "progress-init":
            print(f"[*] Up to {data.get('estimatedTotalSteps')} steps planned")

        elif event_type == "depth-delta":
            print(f"\n[~] Depth {data.get('depth')}/{data.get('maxDepth')}")

        elif event_type == "activity-delta":
            if data.get("status") == "pending":
                continue
            marker = "+" if data.get("status") == "complete" else "!"
            print(f"  [{marker}] {data.get('kind')}: {data.get('message')}")

        elif event_type == "source-delta":
            print(f"  [src] {data.get('title')} ({extract_domain(data.get('url', ''))})")

        elif event_type == "text-delta":
            print(".", end="", flush=True)

        elif event_type == "finish":
            print(f"\n\n[*] Research {data.get('status')}")
            print(f"   Elapsed: {data.get('elapsed')}s")
            print(f"   Iterations: {data.get('iterations')}")
            print(f"   Sources: {data.get('sourceCount')}")
            print(f"\n{'='*50}")
            print("REPORT:")
            print(f"{'='*50}")
            print(data.get("report", ""))


def main():
    parser = argparse.ArgumentParser(description="deepresearch iterative web research")
    parser.add_argument("query", help="Research query")
    parser.add_argument("--max-depth", "-d", type=int, help="Maximum research iterations (1-7)")
    parser.add_argument("--time-limit", "-t", type=float, help="Time limit in seconds (1-270)")

    args = parser.parse_args()

    asyncio.run(run_research(args.query, args.max_depth, args.time_limit))


if __name__ == "__main__":
    main()
