import os
import sys
import numpy as np
import matplotlib.pyplot as plt

# Ensure the package is in python path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from orbdet.astro.attitude import quaternion_from_axis_angle
from orbdet.dynamics.torques import SecondDegreeGravitationalTorque
from orbdet.environment.bodies import Body, Environment
from orbdet.environment.ephemerides import ConstantEphemeris
from orbdet.estimation.convergence import EstimationConvergenceChecker
from orbdet.estimation.observation_models import LinkEndId, LinkEnds, LinkEndType, ObservableType, ObservationSettings
from orbdet.estimation.observation_simulator import ObservationSimulationSettings
from orbdet.estimation.orbit_determination_manager import OrbitDeterminationManager
from orbdet.estimation.parameters import EstimatableParameterSet, InitialRotationalState
from orbdet.estimation.pod import PodInput
from orbdet.propagators.settings import IntegratorSettings, RotationalPropagatorSettings, TimeTermination

MU_MARS = 42828.37  # km^3/s^2


def run_attitude_determination_demo():
    print("=== Attitude Determination Demo (tumbling moonlet) ===")

    # Moonlet held at 10000 km from Mars, tumbling under the gravity-gradient torque.
    # Two landers on its surface are ranged from two relay spacecraft.
    mars = Body('Mars', MU_MARS, ConstantEphemeris())
    moonlet = Body('Moonlet', ephemeris=ConstantEphemeris(np.array([10000.0, 0.0, 0.0, 0.0, 0.0, 0.0])),
                   inertia_tensor=np.diag([1.0, 2.0, 3.0]))
    moonlet.add_ground_station('Lander1', np.array([10.0, 0.0, 0.0]))
    moonlet.add_ground_station('Lander2', np.array([0.0, 10.0, 0.0]))
    relays = [Body('Relay1', ephemeris=ConstantEphemeris(np.array([10000.0, 5000.0, 3000.0, 0.0, 0.0, 0.0]))),
              Body('Relay2', ephemeris=ConstantEphemeris(np.array([12000.0, -4000.0, -2000.0, 0.0, 0.0, 0.0])))]
    env = Environment([mars, moonlet] + relays)

    link_ends = [LinkEnds({LinkEndType.TRANSMITTER: LinkEndId(relay.name),
                           LinkEndType.RECEIVER: LinkEndId('Moonlet', lander)})
                 for relay in relays for lander in ('Lander1', 'Lander2')]

    q0 = quaternion_from_axis_angle(np.array([0.3, 0.5, 0.8]), 0.7)
    w0 = np.array([1e-3, -2e-3, 1.5e-3])  # rad/s
    x0 = np.concatenate((q0, w0))
    t_end = 2 * 3600.0

    propagator = RotationalPropagatorSettings({'Moonlet': [SecondDegreeGravitationalTorque(moonlet, mars)]},
                                              ['Moonlet'], x0, TimeTermination(t_end))
    integrator = IntegratorSettings('RK4', step_size=5.0)
    parameters = EstimatableParameterSet([InitialRotationalState('Moonlet', x0)])

    manager = OrbitDeterminationManager(env, parameters,
                                        [ObservationSettings(ObservableType.ONE_WAY_RANGE, l) for l in link_ends],
                                        integrator, propagator)

    times = np.arange(60.0, t_end - 60.0, 60.0)
    noise = 1e-3  # km
    observations = manager.simulate_observations(
        [ObservationSimulationSettings(ObservableType.ONE_WAY_RANGE, l, times) for l in link_ends],
        noise_std=noise, rng=np.random.default_rng(7))

    deviation = np.array([0.0, 2e-3, -1e-3, 1e-3, 5e-6, -5e-6, 2e-6])
    pod_input = PodInput(observations, parameters.parameter_set_size, initial_parameter_deviation=deviation)
    pod_input.set_constant_weight(1.0 / noise**2)

    output = manager.estimate_parameters(pod_input, EstimationConvergenceChecker(maximum_iterations=8,
                                                                                  minimum_residual_change=1e-3),
                                         verbose=True)

    q_est = output.parameter_estimate[0:4]
    # Angle of the error rotation between the estimated and true attitude
    angle_error = 2.0 * np.arccos(min(1.0, abs(q_est @ q0)))
    print(f"\nAttitude error: {np.degrees(angle_error) * 3600.0:.3f} arcsec")
    print(f"Rate error:     {np.linalg.norm(output.parameter_estimate[4:7] - w0):.3e} rad/s")
    for i, parameters_i in enumerate(output.parameter_history):
        print(f"Iteration {i + 1}: |q| = {np.linalg.norm(parameters_i[0:4]):.15f}")

    # Attitude history of the best estimate
    solver = manager.variational_equations_solver
    history = solver.state_history
    fig, axes = plt.subplots(2, 1, figsize=(10, 8), sharex=True)
    axes[0].plot(history.times / 3600.0, history.states[:, 0:4])
    axes[0].set_ylabel('Quaternion')
    axes[0].legend(['q0', 'q1', 'q2', 'q3'])
    axes[0].grid(True)
    axes[1].plot(history.times / 3600.0, history.states[:, 4:7] * 1e3)
    axes[1].set_ylabel('Angular velocity [mrad/s]')
    axes[1].set_xlabel('Time [h]')
    axes[1].legend(['wx', 'wy', 'wz'])
    axes[1].grid(True)

    output_file = 'attitude_determination_demo.png'
    plt.savefig(output_file)
    print(f"Attitude history plot saved to {output_file}")


if __name__ == "__main__":
    run_attitude_determination_demo()
