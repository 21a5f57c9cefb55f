"""Chart rendering (chart-img.com) and LLM chart analysis."""
