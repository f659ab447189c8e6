"""Client-side drag reconciliation over a :class:`BoardClient`."""
