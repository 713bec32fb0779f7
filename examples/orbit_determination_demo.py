import os
import sys
import numpy as np
import matplotlib.pyplot as plt

# Ensure the package is in python path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from orbdet.astro.element_conversions import keplerian_to_cartesian
from orbdet.dynamics.accelerations import CentralGravity, ExponentialDrag, J2Gravity
from orbdet.environment.bodies import Body, Environment, spherical_station_position
from orbdet.environment.ephemerides import ConstantEphemeris
from orbdet.environment.rotation_models import SimpleRotation
from orbdet.estimation.convergence import EstimationConvergenceChecker
from orbdet.estimation.observation_models import LinkEndId, LinkEnds, LinkEndType, ObservableType, ObservationSettings
from orbdet.estimation.observation_simulator import ObservationSimulationSettings
from orbdet.estimation.orbit_determination_manager import OrbitDeterminationManager
from orbdet.estimation.parameters import DragCoefficient, EstimatableParameterSet, InitialTranslationalState
from orbdet.estimation.pod import PodInput
from orbdet.propagators.settings import IntegratorSettings, TimeTermination, TranslationalPropagatorSettings

MU_EARTH = 398600.4418  # km^3/s^2
R_EARTH = 6378.137  # km
J2_EARTH = 1.08263e-3
OMEGA_EARTH = 7.292115e-5  # rad/s


def run_orbit_determination_demo():
    print("=== Orbit Determination Demo (LEO, one-way range) ===")

    # 1. Environment: rotating Earth with three tracking stations
    earth = Body('Earth', MU_EARTH, ConstantEphemeris(), SimpleRotation(OMEGA_EARTH), reference_radius=R_EARTH)
    satellite = Body('Sat')
    env = Environment([earth, satellite])

    stations = {'Madrid': (40.43, -4.25), 'Goldstone': (35.43, -116.89), 'Canberra': (-35.40, 148.98)}
    link_ends = []
    for name, (lat, lon) in stations.items():
        earth.add_ground_station(name, spherical_station_position(R_EARTH, np.radians(lat), np.radians(lon)))
        link_ends.append(LinkEnds({LinkEndType.TRANSMITTER: LinkEndId('Sat'),
                                   LinkEndType.RECEIVER: LinkEndId('Earth', name)}))

    # 2. Dynamics: point mass + J2 + exponential drag
    drag = ExponentialDrag(satellite, earth, drag_coefficient=2.2, area=4.0, mass=500.0)
    accelerations = {'Sat': [CentralGravity(satellite, earth), J2Gravity(satellite, earth, J2_EARTH), drag]}

    # 400 km circular-ish orbit
    kep = np.array([R_EARTH + 400.0, 0.001, np.radians(51.6), 0.0, np.radians(30.0), 0.0])
    x0 = keplerian_to_cartesian(kep, MU_EARTH)
    t_end = 3 * 3600.0

    propagator = TranslationalPropagatorSettings(['Earth'], accelerations, ['Sat'], x0, TimeTermination(t_end))
    integrator = IntegratorSettings('RK4', step_size=10.0)

    # 3. Estimated parameters: initial state and drag coefficient
    parameters = EstimatableParameterSet([InitialTranslationalState('Sat', x0, 'Earth'), DragCoefficient(drag)])
    parameters.print_parameter_entries()

    manager = OrbitDeterminationManager(env, parameters,
                                        [ObservationSettings(ObservableType.ONE_WAY_RANGE, l) for l in link_ends],
                                        integrator, propagator)

    # 4. Simulate noisy observations with the true parameters
    times = np.arange(60.0, t_end - 60.0, 30.0)
    noise = 0.005  # km
    observations = manager.simulate_observations(
        [ObservationSimulationSettings(ObservableType.ONE_WAY_RANGE, l, times) for l in link_ends],
        noise_std=noise, rng=np.random.default_rng(2024))
    truth = parameters.get_full_parameter_values()

    # 5. Estimate from a perturbed initial guess
    deviation = np.array([1.0, -1.0, 0.5, 1e-3, -1e-3, 5e-4, 0.3])
    pod_input = PodInput(observations, parameters.parameter_set_size, initial_parameter_deviation=deviation)
    pod_input.set_constant_weight(1.0 / noise**2)

    checker = EstimationConvergenceChecker(maximum_iterations=10, minimum_residual_change=1e-3)
    output = manager.estimate_parameters(pod_input, checker, verbose=True)

    error = output.parameter_estimate - truth
    print(f"\nConverged: {output.converged} after {output.number_of_iterations} iterations")
    print(f"Position error: {np.linalg.norm(error[0:3]) * 1e3:.2f} m")
    print(f"Velocity error: {np.linalg.norm(error[3:6]) * 1e6:.3f} mm/s")
    print(f"Cd error:       {error[6]:.4f} (formal sigma {output.formal_errors[6]:.4f})")

    # 6. Post-fit residuals per station
    fig, ax = plt.subplots(figsize=(10, 5))
    start = 0
    for name, l in zip(stations, link_ends):
        n = len(observations[ObservableType.ONE_WAY_RANGE][l])
        ax.plot(times / 3600.0, output.residuals[start:start + n] * 1e3, '.', label=name)
        start += n
    ax.set_xlabel('Time [h]')
    ax.set_ylabel('Range residual [m]')
    ax.set_title('Post-fit one-way range residuals')
    ax.grid(True)
    ax.legend()

    output_file = 'orbit_determination_demo.png'
    plt.savefig(output_file)
    print(f"Residual plot saved to {output_file}")


if __name__ == "__main__":
    run_orbit_determination_demo()
