"""Read MotionCam MCRAW containers, decode raw frames, and export them as DNG and audio as WAV."""

__version__ = "0.5.0"