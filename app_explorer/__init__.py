"""App Explorer: autonomous screen-by-screen exploration of interactive applications.

Each step captures the current UI, compresses it into a fingerprinted snapshot,
asks a decision capability for the next action, executes it, verifies the effect
and records the move in a navigation graph.

Key sub-modules:

elements.py           – Element model and the enums it is written in.
semantic_analyzer.py  – Element categorisation, intent detection and screen type guessing.
hierarchy.py          – HierarchyCompressor and the fingerprinted CompressedHierarchy.
knowledge.py          – NavigationGraph (networkx multigraph) of screens and transitions.
decision.py           – ExplorationDecision, confidence buckets and alternative-action parsing.
verification.py       – ActionVerifier: did the action do what the decision expected?
exploration_loop.py   – ExplorationLoop and its guarded state machine.
result.py             – Step history, navigation map and the final ExplorationResult.
observer.py           – Observer hooks and the default LoggingObserver.
capabilities.py       – Capture / decision / execution interfaces.
action_selector.py    – HeuristicDecider, a deterministic decision capability.
llm_decider.py        – OpenAIDecider, a decision capability backed by a chat model.
playwright_driver.py  – Capture and execution for a Playwright browser page.
config.py, errors.py  – Configuration dataclasses and the error taxonomy.

Nothing is imported eagerly; import the sub-module you need.
"""
