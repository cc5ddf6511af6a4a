"""docchat: document-grounded streaming chat over per-project vector indexes."""
