"""
Face model services for the capture pipeline.

This package provides:
- dlib-based detection, 68-point landmarks and 128-d descriptors
- background model loading with readiness gating
- descriptor comparison for attendance verification
"""

__all__ = [
	'FaceModelService',
	'DlibFaceDetector',
	'compare_faces',
	'find_best_match',
	'verify_capture',
]

# dlib is imported lazily inside DlibFaceDetector.load_models.
