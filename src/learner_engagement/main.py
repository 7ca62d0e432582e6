"""
Main Entry Point for Learner Engagement Tracking

Tracks one learner from a webcam or video file, logs engagement updates and
critical events, and optionally saves the session history and an attention
heatmap when done.
"""

import argparse
import json
import logging
import sys
import time
from typing import List, Optional

import cv2
import numpy as np

from .config import load_config, setup_logging
from .exceptions import EngagementError
from .real_time.frame_source import CameraFrameSource
from .session import create_engagement_service
from .types import AttentionHeatmap, CriticalEvent, EngagementSample

logger = logging.getLogger(__name__)


def save_heatmap(heatmap: AttentionHeatmap, output_path: str):
    """Write a heatmap as a colour-mapped PNG."""
    density = heatmap.density
    peak = float(density.max()) if density.size else 0.0
    scaled = np.zeros(density.shape, dtype=np.uint8)
    if peak > 0:
        scaled = (density / peak * 255).astype(np.uint8)
    image = cv2.applyColorMap(scaled, cv2.COLORMAP_JET)
    if not cv2.imwrite(output_path, image):
        raise OSError(f"Could not write heatmap to {output_path}")
    logger.info(f"Heatmap over {heatmap.point_count} gaze points saved to {output_path}")


def save_history(history, output_path: str):
    with open(output_path, 'w') as f:
        json.dump([sample.to_dict() for sample in history], f, indent=2)
    logger.info(f"{len(history)} samples saved to {output_path}")


def log_update(sample: EngagementSample):
    if sample.sequence % 50 == 0:
        logger.info(
            f"[{sample.subject_id}] engagement {sample.overall_engagement:.2f}, "
            f"attention {sample.attention_level:.2f}, load {sample.cognitive_load:.2f}, "
            f"fatigue {sample.fatigue_level:.2f}, emotion {sample.emotional_state.primary_emotion.value}"
        )


def log_critical_event(event: CriticalEvent):
    logger.warning(f"[{event.sample.subject_id}] {event.kind.value} ({event.severity.value}): {event.recommendation}")


def run_tracking(config: dict, source, subject_id: str, cultural_tag: Optional[str],
                 duration: Optional[float] = None, history_path: Optional[str] = None,
                 heatmap_path: Optional[str] = None) -> int:
    """
    Track a learner until the duration elapses, the source ends or Ctrl+C.

    Args:
        config: System configuration
        source: Webcam index or video file path
        subject_id: Learner identifier
        cultural_tag: Cultural background for calibration
        duration: Maximum duration in seconds (None for unlimited)
        history_path: JSON file for the session history
        heatmap_path: PNG file for the attention heatmap

    Returns:
        Process exit code
    """
    service = create_engagement_service(config)
    frame_source = CameraFrameSource.from_config(config, source)

    try:
        session = service.start_tracking(
            frame_source, subject_id, cultural_tag,
            on_engagement_update=log_update,
            on_critical_event=log_critical_event
        )
    except EngagementError as e:
        logger.error(f"Could not start tracking: {e}")
        service.close()
        return 1

    logger.info(f"Models: {service.get_service_stats()['models_loaded']}")
    start_time = time.time()
    try:
        while session.running:
            if duration and (time.time() - start_time) >= duration:
                logger.info(f"Duration limit of {duration} seconds reached")
                break
            time.sleep(0.2)
    except KeyboardInterrupt:
        logger.info("Tracking interrupted by user")

    session.stop_analysis()
    try:
        if heatmap_path:
            save_heatmap(service.generate_attention_heatmap(session), heatmap_path)
        if history_path:
            save_history(service.get_history(session), history_path)
    except OSError as e:
        logger.error(f"Could not save results: {e}")

    stats = service.get_service_stats(session)
    logger.info("=== Session Summary ===")
    logger.info(f"Samples produced: {stats['session']['samples_produced']}")
    logger.info(f"Samples in history: {stats['history_size']}")
    logger.info(f"Critical events: {stats['session']['critical_events']}")
    logger.info(f"Calibration: {stats['calibration_state']}")

    error = session.error
    service.close()
    if error is not None:
        logger.error(f"Tracking ended with error: {error}")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main function with command line interface."""
    parser = argparse.ArgumentParser(description='Learner Engagement Tracking')

    parser.add_argument('--config', '-c', type=str, default=None,
                        help='Path to configuration file')
    parser.add_argument('--input', '-i', type=str, default='0',
                        help='Input source (webcam index or video file path)')
    parser.add_argument('--subject', '-s', type=str, default='learner',
                        help='Learner identifier')
    parser.add_argument('--culture', type=str, default=None,
                        help='Cultural background tag used for calibration')
    parser.add_argument('--duration', '-d', type=float, default=None,
                        help='Maximum duration in seconds')
    parser.add_argument('--history', type=str, default=None,
                        help='Save the session history as JSON')
    parser.add_argument('--heatmap', type=str, default=None,
                        help='Save the attention heatmap as PNG')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default=None, help='Logging level')

    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.log_level:
        config['logging']['level'] = args.log_level
    setup_logging(config)

    # Convert input to appropriate type
    try:
        source = int(args.input)
    except ValueError:
        source = args.input

    return run_tracking(
        config, source, args.subject, args.culture,
        duration=args.duration,
        history_path=args.history,
        heatmap_path=args.heatmap
    )


if __name__ == '__main__':
    sys.exit(main())
