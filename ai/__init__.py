"""AI document processing: classification, extraction, audit and judgment."""
