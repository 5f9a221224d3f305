"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for network training.

This module provides endpoints for:
- Creating and managing networks layer by layer
- Training networks on MNIST with real-time progress updates via WebSockets
- Running predictions and inspecting test examples

Networks live in memory only; nothing is persisted between restarts.

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for cooperative background training tasks
"""

import os
import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional, Tuple

import gevent
import numpy as np
from flask import Flask, request, jsonify, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from feedforward import config
from feedforward import mnist_loader
from feedforward.activations import ActivationKind
from feedforward.exceptions import ArchitectureMismatch
from feedforward.network import Network
from feedforward.trainer import train

config.configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__, static_folder='static')
CORS(app, resources={r"/*": {"origins": "*"}})

is_production = config.is_production()

socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# MNIST dataset, loaded on first use
training_data: Optional[mnist_loader.MnistDataSet] = None
test_data: Optional[mnist_loader.MnistDataSet] = None

DEFAULT_LAYER_SIZES = [784, 300, 10]


# ============================================================================
# DATA LOADING
# ============================================================================

def load_mnist_data() -> None:
    """
    Load the MNIST dataset into global variables if not already loaded.

    The directory comes from the MNIST_DIR environment variable.
    """
    global training_data, test_data

    if training_data is not None and test_data is not None:
        return

    data_dir = config.get_mnist_dir()
    logger.info(f"Loading MNIST data from {data_dir}...")
    try:
        training_data, test_data = mnist_loader.load_data(data_dir)
    except Exception as e:
        logger.exception(f"Error loading MNIST data: {e}")
        raise


# ============================================================================
# NETWORK CONSTRUCTION
# ============================================================================

def describe_architecture(net: Network) -> List[Dict[str, Any]]:
    """JSON-friendly description of every layer."""
    return [
        {
            'in_size': layer.in_size,
            'out_size': layer.out_size,
            'activation': layer.activation.value
        }
        for layer in net.layers
    ]


def build_network(data: Dict[str, Any]) -> Network:
    """
    Build a network from a creation request body.

    Accepts either an explicit layer list:
        {'layers': [{'in_size': 784, 'out_size': 30, 'activation': 'relu'}, ...]}
    or a size list with one hidden activation and a softmax output:
        {'layer_sizes': [784, 30, 10], 'hidden_activation': 'relu'}

    Both forms take an optional integer 'seed' and boolean 'verbose'.

    Raises:
        ValueError: If the description is malformed
        ArchitectureMismatch: If adjacent layers don't chain
    """
    seed = data.get('seed')
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        raise ValueError('seed must be an integer')

    net = Network(verbose=bool(data.get('verbose', False)), seed=seed)

    if 'layers' in data:
        layers = data['layers']
        if not isinstance(layers, list) or not layers:
            raise ValueError('layers must be a non-empty list')
        for layer_info in layers:
            if not isinstance(layer_info, dict):
                raise ValueError('each layer must be an object')
            try:
                net.add_layer(layer_info['in_size'], layer_info['out_size'], layer_info['activation'])
            except KeyError as e:
                raise ValueError(f"layer is missing field {e}") from None
        return net

    layer_sizes = data.get('layer_sizes', DEFAULT_LAYER_SIZES)
    if not isinstance(layer_sizes, list) or len(layer_sizes) < 2:
        raise ValueError('Invalid architecture. Must have at least 2 layers.')

    hidden = ActivationKind.from_name(data.get('hidden_activation', 'relu'))
    last = len(layer_sizes) - 2
    for i, (in_size, out_size) in enumerate(zip(layer_sizes[:-1], layer_sizes[1:])):
        activation = ActivationKind.SOFTMAX if i == last else hidden
        net.add_layer(in_size, out_size, activation)
    return net


def _get_network_info(network_id: str) -> Optional[Dict[str, Any]]:
    return active_networks.get(network_id)


def _is_training(network_id: str) -> bool:
    return any(
        job['network_id'] == network_id and job['status'] in ('pending', 'training')
        for job in training_jobs.values()
    )


def cleanup_finished_training_jobs() -> None:
    """
    Remove completed or failed training jobs from memory.

    Called whenever a new job is created, so a finished job stays
    queryable until the next training request.
    """
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and counts of networks and active jobs."""
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training,
        'data_loaded': training_data is not None
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network.

    Request body (optional): see build_network(). Defaults to
    784 -> 300 (relu) -> 10 (softmax).

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400

    try:
        net = build_network(data)
    except (ArchitectureMismatch, ValueError, TypeError) as e:
        logger.warning(f"Invalid architecture requested: {e}")
        return jsonify({'error': str(e)}), 400

    network_id = str(uuid.uuid4())
    architecture = describe_architecture(net)
    active_networks[network_id] = {
        'network': net,
        'architecture': architecture,
        'layer_sizes': net.layer_sizes,
        'trained': False,
        'accuracy': None
    }

    logger.info(f"Created network {network_id} with layer sizes {net.layer_sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': architecture,
        'layer_sizes': net.layer_sizes,
        'status': 'created'
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all networks held in memory."""
    networks = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'layer_sizes': info['layer_sizes'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'training': _is_training(nid)
        }
        for nid, info in active_networks.items()
    ]
    logger.debug(f"Listing networks: {len(networks)} in memory")
    return jsonify({'networks': networks}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from memory."""
    if network_id not in active_networks:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    if _is_training(network_id):
        logger.warning(f"Delete attempted for network in training: {network_id}")
        return jsonify({'error': 'Network is training'}), 409

    del active_networks[network_id]
    logger.info(f"Deleted network {network_id}")
    return jsonify({'network_id': network_id, 'deleted': True}), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete every network that is not currently training."""
    busy_ids = [nid for nid in active_networks if _is_training(nid)]
    deleted_ids = [nid for nid in active_networks if nid not in busy_ids]

    for network_id in deleted_ids:
        del active_networks[network_id]

    logger.info(
        f"Deleted all networks: {len(deleted_ids)} deleted, "
        f"{len(busy_ids)} skipped while training"
    )

    return jsonify({
        'deleted_count': len(deleted_ids),
        'skipped_training': busy_ids,
        'message': f'Successfully deleted {len(deleted_ids)} network(s)'
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {
            'epochs': 5,
            'batch_size': 100,
            'learning_rate': 0.2
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    epochs = data.get('epochs', 5)
    batch_size = data.get('batch_size', 100)
    learning_rate = data.get('learning_rate', 0.2)

    if isinstance(epochs, bool) or not isinstance(epochs, int) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        return jsonify({'error': 'batch_size must be a positive integer'}), 400
    if isinstance(learning_rate, bool) or not isinstance(learning_rate, (int, float)) or learning_rate <= 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400

    # A network's gradient accumulators can't be shared between two jobs
    if _is_training(network_id):
        return jsonify({'error': 'Network is already training'}), 409

    cleanup_finished_training_jobs()

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, batch_size={batch_size}, lr={learning_rate}"
    )

    socketio.start_background_task(
        train_network_task,
        network_id, job_id, epochs, batch_size, float(learning_rate)
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    epochs: int,
    batch_size: int,
    learning_rate: float
) -> None:
    """
    Background task that trains a network.

    Sends progress updates via WebSocket after every epoch.
    """
    def on_epoch_complete(stats: Dict[str, Any]) -> None:
        progress = (stats['epoch'] / stats['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress
        training_jobs[job_id]['learning_rate'] = stats['learning_rate']

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': stats['epoch'],
            'total_epochs': stats['total_epochs'],
            'train_loss': stats['train_loss'],
            'accuracy': stats['accuracy'],
            'learning_rate': stats['learning_rate'],
            'elapsed_time': stats['elapsed_time'],
            'progress': progress,
            'correct': stats['correct'],
            'total': stats['total']
        })
        gevent.sleep(0)

    def yield_to_other_tasks() -> None:
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        training_jobs[job_id]['status'] = 'training'

        network_info = _get_network_info(network_id)
        if network_info is None:
            raise LookupError(f"Network {network_id} no longer exists")
        net = network_info['network']

        load_mnist_data()

        history = train(
            net,
            training_data,
            epochs,
            learning_rate=learning_rate,
            batch_size=batch_size,
            test_data=test_data,
            callback=on_epoch_complete,
            yield_func=yield_to_other_tasks
        )
        accuracy = history[-1]['accuracy']

        network_info['trained'] = True
        network_info['accuracy'] = accuracy

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['accuracy'] = accuracy
        training_jobs[job_id]['progress'] = 100

        logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': float(accuracy),
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Run one input vector through a network.

    Request body:
        {'input': [0.0, 0.1, ...]}  # length = the network's input size

    Returns:
        JSON with the predicted class and the full output vector
    """
    info = _get_network_info(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    # forward() overwrites the caches a running backward pass depends on
    if _is_training(network_id):
        return jsonify({'error': 'Network is training'}), 409

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    values = data.get('input')
    if not isinstance(values, list):
        return jsonify({'error': 'input must be a list of numbers'}), 400

    try:
        output = info['network'].forward(values)
    except (ArchitectureMismatch, ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'network_id': network_id,
        'predicted': int(np.argmax(output)),
        'output': array_to_float_list(output)
    }), 200


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in np.asarray(array).flatten()]


def create_digit_image(image: np.ndarray, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        image: 2-D array of pixel values
        predicted: The digit the network predicted
        actual: The correct digit

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(3, 3))
    plt.imshow(image, cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


def find_example(
    net: Network,
    dataset: mnist_loader.MnistDataSet,
    want_correct: bool,
    max_attempts: int
) -> Optional[Tuple[int, int, np.ndarray]]:
    """
    Sample random test images until one matches the requested outcome.

    Returns:
        (index, predicted_digit, output) or None if none was found
    """
    for attempt in range(max_attempts):
        index = int(np.random.randint(0, len(dataset)))
        output = net.forward(dataset.image_vector(index))
        predicted = int(np.argmax(output))

        if (predicted == dataset.label(index)) == want_correct:
            logger.debug(f"Found example on attempt {attempt + 1}")
            return index, predicted, output

    return None


def _example_response(network_id: str, want_correct: bool, max_attempts: int):
    kind = 'successful' if want_correct else 'unsuccessful'

    info = _get_network_info(network_id)
    if info is None:
        logger.warning(f"{kind.capitalize()} example requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    if _is_training(network_id):
        return jsonify({'error': 'Network is training'}), 409

    try:
        load_mnist_data()
    except Exception:
        return jsonify({'error': 'Test data not available'}), 500

    net = info['network']
    if net.layer_sizes[0] != test_data.input_size:
        return jsonify({
            'error': f'Network expects {net.layer_sizes[0]} inputs, '
                     f'images have {test_data.input_size} pixels'
        }), 400

    found = find_example(net, test_data, want_correct, max_attempts)
    if found is None:
        logger.warning(f"No {kind} example found after {max_attempts} attempts")
        return jsonify({
            'error': f'No {kind} example found after {max_attempts} attempts'
        }), 404

    index, predicted, output = found
    actual = test_data.label(index)
    return jsonify({
        'network_id': network_id,
        'example_index': index,
        'predicted_digit': predicted,
        'actual_digit': actual,
        'image_data': create_digit_image(test_data.image(index), predicted, actual),
        'network_output': array_to_float_list(output)
    }), 200


# ============================================================================
# EXAMPLE ENDPOINTS
# ============================================================================

@app.route('/api/networks/<network_id>/successful_example', methods=['GET'])
def get_successful_example(network_id: str):
    """Return a random test example the network classifies correctly."""
    return _example_response(network_id, want_correct=True, max_attempts=100)


@app.route('/api/networks/<network_id>/unsuccessful_example', methods=['GET'])
def get_unsuccessful_example(network_id: str):
    """Return a random test example the network gets wrong."""
    return _example_response(network_id, want_correct=False, max_attempts=200)


# ============================================================================
# STATIC FILE SERVING
# ============================================================================

@app.route('/')
def index():
    """Serve the main frontend page."""
    return send_from_directory(app.static_folder, 'index.html')


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    port = config.get_port()
    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        raise


if __name__ == '__main__':
    static_dir = os.path.join(os.path.dirname(__file__), 'static')
    if not os.path.exists(static_dir):
        os.makedirs(static_dir)
        logger.info(f"Created static directory: {static_dir}")
    main()
