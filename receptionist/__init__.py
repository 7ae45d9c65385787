"""Turn-taking conversation orchestrator for a phone booking voice agent."""
