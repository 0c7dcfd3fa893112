"""Agent core: conversation engine, compaction, tools."""
